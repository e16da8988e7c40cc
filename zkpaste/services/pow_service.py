import hashlib
import secrets
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

import structlog

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class Challenge:
    token: str
    difficulty: int
    expires_at: float  # epoch seconds


def solution_digest(token: str, nonce: int) -> bytes:
    """SHA-256 over ``token:nonce`` with the nonce in decimal."""
    return hashlib.sha256(f"{token}:{nonce}".encode()).digest()


def leading_zero_bits(digest: bytes) -> int:
    bits = 0
    for byte in digest:
        if byte == 0:
            bits += 8
            continue
        bits += 8 - byte.bit_length()
        break
    return bits


class ChallengeGate:
    """
    Issues and verifies proof-of-work challenges.

    Live challenges are held in memory for the lifetime of the process. A
    challenge leaves the live set exactly once: on its first successful
    verification or when an expiry sweep collects it. Failed attempts leave it
    live so the client can keep searching until it expires.
    """

    def __init__(
        self,
        difficulty: int,
        ttl_seconds: int,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.difficulty = difficulty
        self.ttl_seconds = ttl_seconds
        self.enabled = enabled
        self._clock = clock
        self._live: dict[str, Challenge] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._live)

    def issue(self) -> Challenge | None:
        """Create a new live challenge, or None when the gate is disabled."""
        if not self.enabled:
            return None

        challenge = Challenge(
            token=secrets.token_urlsafe(16),
            difficulty=self.difficulty,
            expires_at=self._clock() + self.ttl_seconds,
        )
        with self._lock:
            self._live[challenge.token] = challenge
        return challenge

    def verify(self, token: str, nonce: int) -> bool:
        with self._lock:
            challenge = self._live.get(token)

        if challenge is None:
            return False

        if self._clock() >= challenge.expires_at:
            return False

        if leading_zero_bits(solution_digest(token, nonce)) < challenge.difficulty:
            return False

        with self._lock:
            # Compare-and-delete: a racing verifier may have consumed it already
            if self._live.get(token) is not challenge:
                return False
            del self._live[token]

        logger.info("challenge_verified", difficulty=challenge.difficulty)
        return True

    def sweep_expired(self) -> int:
        """Drop expired challenges. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [token for token, ch in self._live.items() if now >= ch.expires_at]
            for token in expired:
                del self._live[token]
        return len(expired)
