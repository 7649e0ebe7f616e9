"""SQLAlchemy ORM models — schema for the sql backend and the provider service.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Each class = one table. Alembic migrations are generated from these models.

Key concepts:
- Identities (credentials, session epoch) are kept apart from users
  (the profile directory); the identity side belongs to the provider,
  the users table to the data side.
- Every section table carries user_id; every query filters on it.
- Case-insensitive email uniqueness via a unique index on lower(email).
- Portable column types (String ids, Date, Boolean) so the same models
  run on PostgreSQL in production and SQLite in tests.
"""

import uuid
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from cvbank.schemas.collections import Collection, Singleton


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


# ══════════════════════════════════════════════════════════════
# Identity provider side
# ══════════════════════════════════════════════════════════════


class Identity(Base):
    """Sign-in credentials for one account.

    Learn: session_epoch is embedded in every token issued for this
    identity. Signing out increments it, so all earlier tokens stop
    verifying, that's how a stateless JWT session gets revoked.
    """

    __tablename__ = "identities"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    session_epoch: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


# ══════════════════════════════════════════════════════════════
# Data side
# ══════════════════════════════════════════════════════════════


class UserRow(Base):
    """A user of the CV bank. id matches the identity id."""

    __tablename__ = "users"
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="user")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )


# Case-insensitive email uniqueness
Index("uq_identities_email_lower", func.lower(Identity.email), unique=True)
Index("uq_users_email_lower", func.lower(UserRow.email), unique=True)


class _OwnedRow:
    """Columns shared by every owned section row."""

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=utcnow
    )


class PersonalDataRow(_OwnedRow, Base):
    __tablename__ = "personal_data"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    full_name: Mapped[str] = mapped_column(String(200), default="")
    email: Mapped[str] = mapped_column(String(255), default="")
    phone: Mapped[str] = mapped_column(String(50), default="")
    address: Mapped[str] = mapped_column(String(255), default="")
    city: Mapped[str] = mapped_column(String(100), default="")
    country: Mapped[str] = mapped_column(String(100), default="")
    summary: Mapped[str] = mapped_column(Text, default="")


class UserSettingsRow(_OwnedRow, Base):
    __tablename__ = "user_settings"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    notifications_new_opportunities: Mapped[bool] = mapped_column(Boolean, default=True)


class ExperienceRow(_OwnedRow, Base):
    __tablename__ = "professional_experiences"

    company: Mapped[str] = mapped_column(String(200), nullable=False)
    role: Mapped[str] = mapped_column(String(200), nullable=False)
    country: Mapped[str] = mapped_column(String(100), default="")
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    is_current: Mapped[bool] = mapped_column(Boolean, default=False)
    description: Mapped[str] = mapped_column(Text, default="")


class AcademicRecordRow(_OwnedRow, Base):
    __tablename__ = "academic_records"

    institution: Mapped[str] = mapped_column(String(200), nullable=False)
    degree: Mapped[str] = mapped_column(String(200), nullable=False)
    field_of_study: Mapped[str] = mapped_column(String(200), default="")
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    in_progress: Mapped[bool] = mapped_column(Boolean, default=False)
    description: Mapped[str] = mapped_column(Text, default="")


class LanguageRow(_OwnedRow, Base):
    __tablename__ = "languages"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    level: Mapped[str] = mapped_column(String(20), nullable=False)


class ToolRow(_OwnedRow, Base):
    __tablename__ = "tools"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str] = mapped_column(String(100), default="")


class ReferenceRow(_OwnedRow, Base):
    __tablename__ = "profile_references"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    relationship: Mapped[str] = mapped_column(String(100), default="")
    company: Mapped[str] = mapped_column(String(200), default="")
    email: Mapped[str] = mapped_column(String(255), default="")
    phone: Mapped[str] = mapped_column(String(50), default="")


COLLECTION_ROWS: dict[Collection, type[_OwnedRow]] = {
    Collection.PROFESSIONAL_EXPERIENCES: ExperienceRow,
    Collection.ACADEMIC_RECORDS: AcademicRecordRow,
    Collection.LANGUAGES: LanguageRow,
    Collection.TOOLS: ToolRow,
    Collection.REFERENCES: ReferenceRow,
}

SINGLETON_ROWS: dict[Singleton, type[_OwnedRow]] = {
    Singleton.PERSONAL_DATA: PersonalDataRow,
    Singleton.SETTINGS: UserSettingsRow,
}
