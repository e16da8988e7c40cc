import structlog
from fastapi import APIRouter, Depends, Request, Response

from zkpaste.config import settings
from zkpaste.dependencies import Services, get_services
from zkpaste.middleware.rate_limit import limiter
from zkpaste.schemas.challenge import ChallengeResponse

router = APIRouter()
logger = structlog.get_logger()


@router.get(
    "/pow",
    response_model=ChallengeResponse,
    responses={204: {"description": "Proof of work is not required"}},
)
@limiter.limit(settings.rate_limit_challenges)
async def issue_challenge(
    request: Request,
    services: Services = Depends(get_services),
):
    """
    Request a proof-of-work challenge.

    The client must find a nonce such that SHA-256("<token>:<nonce>") has at
    least `difficulty` leading zero bits, then submit it with the paste.
    Returns 204 when the server does not require proof of work.
    """
    challenge = services.gate.issue()
    if challenge is None:
        return Response(status_code=204)

    logger.info("challenge_issued", difficulty=challenge.difficulty)

    return ChallengeResponse(
        token=challenge.token,
        difficulty=challenge.difficulty,
        expires_at=int(challenge.expires_at),
        algorithm="sha256",
    )
