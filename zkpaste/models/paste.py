from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, Integer, LargeBinary, String
from sqlalchemy.orm import Mapped, mapped_column

from zkpaste.database import Base


class Paste(Base):
    """
    An encrypted paste.

    The server only ever sees ciphertext; the key stays in the URL fragment on
    the client. The deletion token is stored as a peppered one-way hash.
    """

    __tablename__ = "pastes"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)

    # Encrypted payload
    ciphertext: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    iv: Mapped[bytes] = mapped_column(LargeBinary(64), nullable=False)
    mime: Mapped[str | None] = mapped_column(String(128), nullable=True, default=None)

    # Lifetime
    expire_at: Mapped[datetime] = mapped_column(DateTime, index=True, nullable=False)
    view_limit: Mapped[int | None] = mapped_column(Integer, nullable=True, default=None)
    views_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    single_view: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    deletion_token_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=lambda: datetime.now(UTC).replace(tzinfo=None), nullable=False
    )
