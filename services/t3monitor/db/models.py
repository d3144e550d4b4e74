"""
SQLAlchemy database models for t3monitor.

All models use:
- Integer autoincrement primary keys (ids are captured after flush)
- snake_case column names
- Plural table names
- TIMESTAMPTZ with UTC for all timestamps
- Soft delete on clients only; catalog rows are never deleted by the importer
"""

from datetime import UTC, datetime
from enum import IntEnum

import sqlalchemy as sa
from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


class ExtensionState(IntEnum):
    """Lifecycle state of an extension as reported by the client.

    Labels are the ones TYPO3's extension manager uses; anything else is
    stored as UNKNOWN.
    """

    ALPHA = 0
    BETA = 1
    STABLE = 2
    EXPERIMENTAL = 3
    TEST = 4
    OBSOLETE = 5
    EXCLUDE_FROM_UPDATES = 6
    UNKNOWN = 999

    @classmethod
    def from_label(cls, label: str | None) -> "ExtensionState":
        return _STATE_LABELS.get(label or "", cls.UNKNOWN)

    @property
    def label(self) -> str:
        return _STATE_NAMES[self]


_STATE_LABELS: dict[str, ExtensionState] = {
    "alpha": ExtensionState.ALPHA,
    "beta": ExtensionState.BETA,
    "stable": ExtensionState.STABLE,
    "experimental": ExtensionState.EXPERIMENTAL,
    "test": ExtensionState.TEST,
    "obsolete": ExtensionState.OBSOLETE,
    "excludeFromUpdates": ExtensionState.EXCLUDE_FROM_UPDATES,
}
_STATE_NAMES: dict[ExtensionState, str] = {v: k for k, v in _STATE_LABELS.items()}
_STATE_NAMES[ExtensionState.UNKNOWN] = "n/a"


class Base(DeclarativeBase):
    """Base class for all models."""


class CoreVersion(Base):
    """A distinct TYPO3 core version seen on at least one client.

    Created lazily on first sight and never updated afterwards, except for
    is_used which the data integrity pass recomputes.
    """

    __tablename__ = "core_versions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    version: Mapped[str] = mapped_column(String(63), nullable=False)
    version_integer: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_official: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    insecure: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    __table_args__ = (
        sa.UniqueConstraint("version", name="uq_core_versions_version"),
    )


class Client(Base):
    """A monitored TYPO3 installation.

    Everything below `secret` is written by the importer after each fetch.
    """

    __tablename__ = "clients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    domain: Mapped[str] = mapped_column(String(500), nullable=False)
    secret: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    hidden: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    php_version: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    mysql_version: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    core_version_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("core_versions.id", ondelete="SET NULL"), nullable=True
    )
    extension_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    backend_user_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Compact JSON as reported, "" when the client sent nothing
    extra_info: Mapped[str] = mapped_column(Text, nullable=False, default="")
    extra_warning: Mapped[str] = mapped_column(Text, nullable=False, default="")
    extra_danger: Mapped[str] = mapped_column(Text, nullable=False, default="")

    last_successful_import: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    error_message: Mapped[str] = mapped_column(Text, nullable=False, default="")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        Index("ix_clients_visible", "deleted", "hidden"),
    )


class Extension(Base):
    """A distinct (name, version) extension release."""

    __tablename__ = "extensions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    version: Mapped[str] = mapped_column(String(63), nullable=False)
    version_integer: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    state: Mapped[int] = mapped_column(
        Integer, nullable=False, default=int(ExtensionState.UNKNOWN)
    )
    is_official: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    __table_args__ = (
        sa.UniqueConstraint("name", "version", name="uq_extensions"),
    )


class BackendUser(Base):
    """A TYPO3 backend account seen on a client.

    user_name is indexed but deliberately not unique: whether the same name
    on two installations is one person is a matching-scope decision made by
    the backend user reconciler.
    """

    __tablename__ = "backend_users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_name: Mapped[str] = mapped_column(String(255), nullable=False)
    real_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    email_address: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    last_login: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        Index("ix_backend_users_user_name", "user_name"),
    )


# --- Association Tables ---


class ClientExtension(Base):
    """Client ↔ extension link with the per-client snapshot of the report."""

    __tablename__ = "client_extensions"

    client_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("clients.id", ondelete="CASCADE"), primary_key=True
    )
    extension_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("extensions.id", ondelete="CASCADE"), primary_key=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    state: Mapped[int] = mapped_column(
        Integer, nullable=False, default=int(ExtensionState.UNKNOWN)
    )
    is_loaded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("ix_client_extensions_extension_id", "extension_id"),
    )


class ClientBackendUser(Base):
    """Client ↔ backend user link."""

    __tablename__ = "client_backend_users"

    client_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("clients.id", ondelete="CASCADE"), primary_key=True
    )
    backend_user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("backend_users.id", ondelete="CASCADE"), primary_key=True
    )


class ImportTime(Base):
    """Completion time of the last import pass, keyed by import kind."""

    __tablename__ = "import_times"

    name: Mapped[str] = mapped_column(String(63), primary_key=True)
    imported_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
