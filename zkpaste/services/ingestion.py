import math
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog
from pydantic import ValidationError

from zkpaste.errors import ClientRejection
from zkpaste.schemas.paste import PasteCreate
from zkpaste.services.identifiers import new_deletion_token, new_paste_id
from zkpaste.services.paste_store import PasteStore
from zkpaste.services.pow_service import ChallengeGate
from zkpaste.services.rate_limiter import TokenBucketLimiter

logger = structlog.get_logger()

SECONDS_PER_DAY = 86_400

# Room for the IV, mime, PoW solution and JSON punctuation around the ciphertext
BODY_ENVELOPE_BYTES = 4096


@dataclass(frozen=True, slots=True)
class IngestionLimits:
    max_ciphertext_size: int = 1_000_000
    iv_min_bytes: int = 12
    iv_max_bytes: int = 64
    min_expiry_seconds: int = 10
    max_expiry_days: int = 365
    paste_id_length: int = 10
    deletion_token_length: int = 24

    @property
    def max_body_bytes(self) -> int:
        """Largest request body that could still carry a valid paste."""
        return math.ceil(self.max_ciphertext_size * 4 / 3) + BODY_ENVELOPE_BYTES


@dataclass(frozen=True, slots=True)
class CreatedPaste:
    id: str
    deletion_token: str


class IngestionCoordinator:
    """
    The create path.

    Checks run in a fixed order and the first failure wins: rate limit, body
    structure, proof of work, payload sizes, expiry. Only then are the id and
    deletion token generated and the paste stored.
    """

    def __init__(
        self,
        store: PasteStore,
        gate: ChallengeGate,
        limiter: TokenBucketLimiter | None,
        limits: IngestionLimits | None = None,
        clock: Callable[[], float] = lambda: datetime.now(UTC).timestamp(),
    ) -> None:
        self.store = store
        self.gate = gate
        self.limiter = limiter
        self.limits = limits or IngestionLimits()
        self._clock = clock

    def _reject(self, reason: str, message: str | None = None) -> ClientRejection:
        logger.info("paste_rejected", reason=reason)
        return ClientRejection(reason, message)

    def _throttle(self, client_key: str) -> None:
        if self.limiter is not None and not self.limiter.allow(client_key):
            logger.warning("rate_limited", scope="create")
            raise ClientRejection("rate_limited")

    def reject_oversized_body(self, client_key: str) -> None:
        """Refuse a body too large to hold a valid paste, without parsing it.

        The throttle still runs first, so a throttled client sees
        ``rate_limited`` whatever it sent.
        """
        self._throttle(client_key)
        raise self._reject("size_invalid", "Request body too large")

    def ingest(self, client_key: str, body: bytes | str) -> CreatedPaste:
        self._throttle(client_key)

        try:
            request = PasteCreate.model_validate_json(body)
        except ValidationError as e:
            raise self._reject("invalid_json", str(e))

        if self.gate.enabled:
            if request.pow_solution is None:
                raise self._reject("pow_required")
            if not self.gate.verify(request.pow_solution.token, request.pow_solution.nonce):
                raise self._reject("pow_invalid")

        ciphertext = request.ciphertext_bytes()
        iv = request.iv_bytes()
        limits = self.limits
        if not 0 < len(ciphertext) <= limits.max_ciphertext_size:
            raise self._reject("size_invalid", "Ciphertext size out of range")
        if not limits.iv_min_bytes <= len(iv) <= limits.iv_max_bytes:
            raise self._reject("size_invalid", "IV size out of range")

        now = self._clock()
        if request.expire_at <= now + limits.min_expiry_seconds:
            raise self._reject("expiry_too_soon")
        if request.expire_at > now + limits.max_expiry_days * SECONDS_PER_DAY:
            raise self._reject("expiry_too_far")

        paste_id = new_paste_id(limits.paste_id_length)
        deletion_token = new_deletion_token(limits.deletion_token_length)
        self.store.create(
            paste_id=paste_id,
            ciphertext=ciphertext,
            iv=iv,
            expire_at=datetime.fromtimestamp(request.expire_at, UTC).replace(tzinfo=None),
            view_limit=request.view_limit,
            single_view=request.single_view,
            raw_deletion_token=deletion_token,
            mime=request.mime,
        )

        logger.info(
            "paste_created",
            ciphertext_size=len(ciphertext),
            view_limit=request.view_limit,
            single_view=request.single_view,
        )
        return CreatedPaste(id=paste_id, deletion_token=deletion_token)
