"""Process-lifetime service objects.

Everything that holds shared state (live challenges, rate buckets, per-paste
locks) is built once when the app starts, stored on ``app.state`` and dropped
at shutdown.
"""

from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Request
from sqlalchemy.orm import Session

from zkpaste.config import Settings
from zkpaste.services.ingestion import IngestionCoordinator, IngestionLimits
from zkpaste.services.paste_store import PasteStore
from zkpaste.services.pow_service import ChallengeGate
from zkpaste.services.rate_limiter import TokenBucketLimiter
from zkpaste.services.retrieval import RetrievalCoordinator


@dataclass
class Services:
    gate: ChallengeGate
    limiter: TokenBucketLimiter | None
    store: PasteStore
    ingestion: IngestionCoordinator
    retrieval: RetrievalCoordinator

    @classmethod
    def from_settings(
        cls, settings: Settings, session_factory: Callable[[], Session]
    ) -> "Services":
        gate = ChallengeGate(
            difficulty=settings.pow_difficulty,
            ttl_seconds=settings.pow_challenge_ttl_seconds,
            enabled=settings.pow_enabled,
        )
        limiter = None
        if settings.rate_limit_enabled:
            limiter = TokenBucketLimiter(
                capacity=settings.rate_limit_capacity,
                refill_per_minute=settings.rate_limit_refill_per_minute,
            )
        store = PasteStore(
            session_factory,
            pepper=settings.deletion_token_pepper,
            timeout_seconds=settings.store_timeout_seconds,
        )
        limits = IngestionLimits(
            max_ciphertext_size=settings.max_ciphertext_size,
            iv_min_bytes=settings.iv_min_bytes,
            iv_max_bytes=settings.iv_max_bytes,
            min_expiry_seconds=settings.min_expiry_seconds,
            max_expiry_days=settings.max_expiry_days,
            paste_id_length=settings.paste_id_length,
            deletion_token_length=settings.deletion_token_length,
        )
        return cls(
            gate=gate,
            limiter=limiter,
            store=store,
            ingestion=IngestionCoordinator(store, gate, limiter, limits),
            retrieval=RetrievalCoordinator(store),
        )


def get_services(request: Request) -> Services:
    """Dependency for FastAPI endpoints to get the app's services."""
    return request.app.state.services
