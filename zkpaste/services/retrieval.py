from dataclasses import dataclass
from datetime import UTC, datetime

import structlog

from zkpaste.errors import DeletionForbidden, PasteNotFound
from zkpaste.services.paste_store import PasteRecord, PasteStore

logger = structlog.get_logger()

# Conditional writes that lose to another process are retried this many times
MAX_VIEW_ATTEMPTS = 3


def utc_timestamp(value: datetime) -> int:
    return int(value.replace(tzinfo=UTC).timestamp())


@dataclass(frozen=True, slots=True)
class PasteView:
    ciphertext: bytes
    iv: bytes
    expire_at: int
    view_limit: int | None
    single_view: bool
    mime: str | None
    views_remaining: int | None

    @classmethod
    def granted(cls, record: PasteRecord, destroyed: bool) -> "PasteView":
        """Build the payload for a view, counting the view being granted."""
        remaining = None
        if record.view_limit is not None:
            remaining = 0 if destroyed else max(0, record.view_limit - (record.views_used + 1))
        return cls(
            ciphertext=record.ciphertext,
            iv=record.iv,
            expire_at=utc_timestamp(record.expire_at),
            view_limit=record.view_limit,
            single_view=record.single_view,
            mime=record.mime,
            views_remaining=remaining,
        )


class RetrievalCoordinator:
    def __init__(self, store: PasteStore) -> None:
        self.store = store

    def view(self, paste_id: str) -> PasteView:
        """
        Read a paste and spend one view.

        The lookup, the destroy-or-count decision and its write happen under the
        paste's lock, so of N racing readers of a single-view paste exactly one
        sees the content. Raises PasteNotFound for absent, expired or exhausted
        pastes alike.
        """
        with self.store.row_lock(paste_id):
            for _ in range(MAX_VIEW_ATTEMPTS):
                record = self.store.fetch_if_available(paste_id)
                if record is None:
                    raise PasteNotFound()

                destroy = self.store.decide_destruction_after_view(record)
                if destroy:
                    consumed = self.store.delete(paste_id, expected_views=record.views_used)
                else:
                    consumed = self.store.record_view(paste_id, expected_views=record.views_used)

                if consumed:
                    logger.info(
                        "paste_destroyed" if destroy else "paste_viewed",
                        views_used=record.views_used + 1,
                        view_limit=record.view_limit,
                    )
                    return PasteView.granted(record, destroyed=destroy)

        # Someone outside this process kept winning; treat as gone
        raise PasteNotFound()

    def delete(self, paste_id: str, raw_token: str) -> None:
        """Delete with the capability token. Wrong token and unknown id look the same."""
        if not raw_token or not self.store.delete_if_token_matches(paste_id, raw_token):
            logger.info("paste_delete_denied")
            raise DeletionForbidden()
        logger.info("paste_deleted")
