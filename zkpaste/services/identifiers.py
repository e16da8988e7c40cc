import secrets
import string

ALPHABET = string.digits + string.ascii_lowercase + string.ascii_uppercase


def random_id(length: int) -> str:
    """Generate an unguessable identifier from a 62-character alphabet."""
    if length < 1:
        raise ValueError("Identifier length must be positive")
    return "".join(secrets.choice(ALPHABET) for _ in range(length))


def new_paste_id(length: int = 10) -> str:
    return random_id(length)


def new_deletion_token(length: int = 24) -> str:
    # 24 chars from a 62 symbol alphabet is ~142 bits
    return random_id(length)
