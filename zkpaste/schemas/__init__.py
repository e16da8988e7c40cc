from zkpaste.schemas.challenge import ChallengeResponse
from zkpaste.schemas.paste import (
    ErrorResponse,
    PasteCreate,
    PasteCreateResponse,
    PasteRetrieveResponse,
    PowSolution,
)

__all__ = [
    "ChallengeResponse",
    "ErrorResponse",
    "PasteCreate",
    "PasteCreateResponse",
    "PasteRetrieveResponse",
    "PowSolution",
]
