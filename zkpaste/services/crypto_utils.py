import hashlib
import hmac

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerifyMismatchError

# Configure Argon2id with secure parameters
# time_cost=3, memory_cost=65536 (64MB), parallelism=4
ph = PasswordHasher(
    time_cost=3,
    memory_cost=65536,
    parallelism=4,
    hash_len=32,
    salt_len=16,
)


def pepper_token(token: str, pepper: str) -> str:
    """HMAC-SHA256 the token with the server pepper.

    A leaked database alone is not enough to brute-force or forge tokens.
    """
    return hmac.new(pepper.encode(), token.encode(), hashlib.sha256).hexdigest()


def hash_token(token: str, pepper: str) -> str:
    """Hash a peppered token using Argon2id."""
    return ph.hash(pepper_token(token, pepper))


def verify_token(token: str, token_hash: str, pepper: str) -> bool:
    """Verify a token against its peppered Argon2id hash."""
    try:
        ph.verify(token_hash, pepper_token(token, pepper))
        return True
    except (VerifyMismatchError, InvalidHashError):
        return False
