import secrets
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime

import structlog
from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from zkpaste.errors import StorageUnavailableError
from zkpaste.models.paste import Paste
from zkpaste.services.crypto_utils import hash_token, verify_token

logger = structlog.get_logger()


def utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


@dataclass(frozen=True, slots=True)
class PasteRecord:
    """Detached snapshot of a paste row."""

    id: str
    ciphertext: bytes
    iv: bytes
    expire_at: datetime
    view_limit: int | None
    views_used: int
    single_view: bool
    mime: str | None
    created_at: datetime

    @classmethod
    def from_model(cls, paste: Paste) -> "PasteRecord":
        return cls(
            id=paste.id,
            ciphertext=paste.ciphertext,
            iv=paste.iv,
            expire_at=paste.expire_at,
            view_limit=paste.view_limit,
            views_used=paste.views_used,
            single_view=paste.single_view,
            mime=paste.mime,
            created_at=paste.created_at,
        )


@dataclass
class _RowLock:
    lock: threading.RLock = field(default_factory=threading.RLock)
    users: int = 0


def _available(now: datetime):
    return (
        Paste.expire_at > now,
        or_(Paste.view_limit.is_(None), Paste.views_used < Paste.view_limit),
    )


class PasteStore:
    """
    Owns paste rows and their lifecycle.

    Mutations of a single paste (view accounting, deletion) are serialized by a
    per-id lock and are additionally guarded in SQL, so a stale snapshot can
    never consume the same view budget twice. Pastes with different ids never
    wait on each other.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        pepper: str,
        timeout_seconds: float = 5.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._pepper = pepper
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._row_locks: dict[str, _RowLock] = {}
        self._registry_lock = threading.Lock()
        # Verified against for unknown ids so every miss costs one Argon2 verify
        self._placeholder_hash = hash_token(secrets.token_hex(16), pepper)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("storage_error", error=type(e).__name__)
            raise StorageUnavailableError(message="Paste store unavailable") from e
        finally:
            db.close()

    @contextmanager
    def row_lock(self, paste_id: str) -> Iterator[None]:
        """Hold the single-writer lock for ``paste_id``. Reentrant."""
        with self._registry_lock:
            entry = self._row_locks.setdefault(paste_id, _RowLock())
            entry.users += 1
        try:
            if not entry.lock.acquire(timeout=self.timeout_seconds):
                raise StorageUnavailableError(message="Timed out waiting for paste lock")
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            with self._registry_lock:
                entry.users -= 1
                if entry.users == 0:
                    del self._row_locks[paste_id]

    def create(
        self,
        paste_id: str,
        ciphertext: bytes,
        iv: bytes,
        expire_at: datetime,
        view_limit: int | None,
        single_view: bool,
        raw_deletion_token: str,
        mime: str | None = None,
    ) -> PasteRecord:
        """
        Insert a new paste with ``views_used = 0``.

        Only the peppered hash of the deletion token is stored. A duplicate id
        surfaces as StorageUnavailableError; the caller may retry with a new id.
        """
        token_hash = hash_token(raw_deletion_token, self._pepper)

        with self._session() as db:
            paste = Paste(
                id=paste_id,
                ciphertext=ciphertext,
                iv=iv,
                expire_at=expire_at,
                view_limit=view_limit,
                views_used=0,
                single_view=single_view,
                mime=mime,
                deletion_token_hash=token_hash,
                created_at=self._clock(),
            )
            db.add(paste)
            db.commit()
            return PasteRecord.from_model(paste)

    def fetch_if_available(self, paste_id: str) -> PasteRecord | None:
        """Return the paste only if it is unexpired and has views left."""
        with self._session() as db:
            paste = db.scalars(
                select(Paste).where(Paste.id == paste_id, *_available(self._clock()))
            ).first()
            return PasteRecord.from_model(paste) if paste is not None else None

    def record_view(self, paste_id: str, expected_views: int | None = None) -> bool:
        """
        Atomically increment ``views_used`` while it stays within ``view_limit``.

        With ``expected_views`` the increment only applies if nobody else has
        counted a view since that snapshot. Returns True if a row was updated.
        """
        conditions = [
            Paste.id == paste_id,
            or_(Paste.view_limit.is_(None), Paste.views_used < Paste.view_limit),
        ]
        if expected_views is not None:
            conditions.append(Paste.views_used == expected_views)

        with self.row_lock(paste_id), self._session() as db:
            result = db.execute(
                update(Paste)
                .where(*conditions)
                .values(views_used=Paste.views_used + 1)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            return result.rowcount == 1

    def delete(self, paste_id: str, expected_views: int | None = None) -> bool:
        """Delete a paste. ``expected_views`` makes it a compare-and-delete."""
        conditions = [Paste.id == paste_id]
        if expected_views is not None:
            conditions.append(Paste.views_used == expected_views)

        with self.row_lock(paste_id), self._session() as db:
            result = db.execute(
                delete(Paste).where(*conditions).execution_options(synchronize_session=False)
            )
            db.commit()
            return result.rowcount == 1

    def delete_if_token_matches(self, paste_id: str, raw_token: str) -> bool:
        """
        Delete the paste iff ``raw_token`` hashes to the stored digest.

        An unknown id still pays for one hash verification, so the response
        time does not reveal whether the paste exists.
        """
        with self.row_lock(paste_id):
            with self._session() as db:
                token_hash = db.scalars(
                    select(Paste.deletion_token_hash).where(Paste.id == paste_id)
                ).first()

            if token_hash is None:
                verify_token(raw_token, self._placeholder_hash, self._pepper)
                return False

            if not verify_token(raw_token, token_hash, self._pepper):
                return False

            return self.delete(paste_id)

    @staticmethod
    def decide_destruction_after_view(record: PasteRecord) -> bool:
        """True iff the view about to be granted is the last one ever allowed."""
        if record.single_view:
            return True
        return record.view_limit is not None and record.views_used + 1 >= record.view_limit

    def purge_expired(self) -> int:
        """Physically remove pastes that are expired or out of views."""
        now = self._clock()
        with self._session() as db:
            result = db.execute(
                delete(Paste)
                .where(
                    or_(
                        Paste.expire_at <= now,
                        Paste.view_limit.is_not(None) & (Paste.views_used >= Paste.view_limit),
                    )
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()
            return result.rowcount
