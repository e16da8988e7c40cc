import base64
import re

from pydantic import BaseModel, Field, field_validator

_BASE64URL = re.compile(r"^[A-Za-z0-9_-]*={0,2}$")


def strict_base64url_decode(value: str, field_name: str) -> bytes:
    """
    Strictly validate and decode base64url text.

    Padding is optional. Rejects standard-alphabet characters, whitespace and
    impossible lengths.
    """
    if not _BASE64URL.match(value):
        raise ValueError(f"{field_name}: Invalid base64url characters")
    unpadded = value.rstrip("=")
    if len(unpadded) % 4 == 1:
        raise ValueError(f"{field_name}: Invalid base64url length")
    try:
        return base64.urlsafe_b64decode(unpadded + "=" * (-len(unpadded) % 4))
    except ValueError:
        raise ValueError(f"{field_name}: Invalid base64url encoding")


def base64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


class PowSolution(BaseModel):
    token: str = Field(..., min_length=1, max_length=128)
    nonce: int = Field(..., ge=0)


class PasteCreate(BaseModel):
    ciphertext: str = Field(..., description="Base64url encoded ciphertext")
    iv: str = Field(..., description="Base64url encoded IV")
    expire_at: int = Field(..., description="Expiry as epoch seconds")
    view_limit: int | None = Field(None, gt=0)
    single_view: bool = False
    mime: str | None = Field(None, max_length=128)
    pow_solution: PowSolution | None = None

    @field_validator("ciphertext", "iv")
    @classmethod
    def validate_base64url(cls, v: str, info) -> str:
        strict_base64url_decode(v, info.field_name)
        return v

    def ciphertext_bytes(self) -> bytes:
        return strict_base64url_decode(self.ciphertext, "ciphertext")

    def iv_bytes(self) -> bytes:
        return strict_base64url_decode(self.iv, "iv")


class PasteCreateResponse(BaseModel):
    id: str
    deletion_token: str  # Raw token - only returned at creation time


class PasteRetrieveResponse(BaseModel):
    ciphertext: str
    iv: str
    expire_at: int
    view_limit: int | None = None
    single_view: bool
    mime: str | None = None
    views_remaining: int | None = None


class ErrorResponse(BaseModel):
    error: str
