"""SQLAlchemy ORM models for the shortlink service.

Data Model Layout
=================
::
    links table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ short_code (VARCHAR(12) UNIQUE, INDEXED)
    ├─ original_url (TEXT NOT NULL)
    ├─ expires_at (TIMESTAMPTZ NULL, INDEXED)
    └─ created_at (TIMESTAMPTZ, DEFAULT NOW())

    clicks table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ link_id (FK links.id ON DELETE CASCADE, INDEXED)
    ├─ ip_address (VARCHAR(45))
    ├─ user_agent (TEXT)
    ├─ referer (TEXT)
    ├─ country (VARCHAR(2))
    └─ clicked_at (TIMESTAMPTZ, INDEXED)

Key Behaviours
===============
- short_code is indexed for fast lookups during redirects.
- A NULL expires_at means the link never expires.
- Deleting a link cascades to its clicks.
- clicked_at is written by the click workers, not by the database default.

Classes:
    Link:  A shortened URL mapping.
    Click:  One recorded redirect.
"""

import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from shortlink.database import Base

__all__ = ["Link", "Click"]


class Link(Base):
    __tablename__ = "links"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    short_code: Mapped[str] = mapped_column(String(12), unique=True, index=True, nullable=False)
    original_url: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), index=True, nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<Link(id={self.id}, short_code='{self.short_code}')>"


class Click(Base):
    __tablename__ = "clicks"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    link_id: Mapped[int] = mapped_column(ForeignKey("links.id", ondelete="CASCADE"), index=True, nullable=False)
    ip_address: Mapped[str] = mapped_column(String(45), default="", nullable=False)
    user_agent: Mapped[str] = mapped_column(Text, default="", nullable=False)
    referer: Mapped[str] = mapped_column(Text, default="", nullable=False)
    country: Mapped[str] = mapped_column(String(2), default="", nullable=False)
    clicked_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True, nullable=False
    )

    def __repr__(self) -> str:
        return f"<Click(id={self.id}, link_id={self.link_id})>"
