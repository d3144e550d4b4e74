"""Initial schema: clients, catalog tables and their associations.

Adds:
- core_versions: distinct TYPO3 core versions
- clients: monitored installations plus the last imported report
- extensions: distinct (name, version) extension releases
- backend_users: backend accounts seen on clients
- client_extensions / client_backend_users: per-client associations
- import_times: completion time of the last import pass per kind

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "core_versions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("version", sa.String(63), nullable=False),
        sa.Column("version_integer", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_official", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("insecure", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("version", name="uq_core_versions_version"),
    )

    op.create_table(
        "clients",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(255), nullable=False, server_default=""),
        sa.Column("domain", sa.String(500), nullable=False),
        sa.Column("secret", sa.String(255), nullable=False, server_default=""),
        sa.Column("deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("hidden", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("php_version", sa.String(255), nullable=False, server_default=""),
        sa.Column("mysql_version", sa.String(255), nullable=False, server_default=""),
        sa.Column(
            "core_version_id",
            sa.Integer(),
            sa.ForeignKey("core_versions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("extension_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("backend_user_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("extra_info", sa.Text(), nullable=False, server_default=""),
        sa.Column("extra_warning", sa.Text(), nullable=False, server_default=""),
        sa.Column("extra_danger", sa.Text(), nullable=False, server_default=""),
        sa.Column("last_successful_import", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=False, server_default=""),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_clients_visible", "clients", ["deleted", "hidden"])

    op.create_table(
        "extensions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("version", sa.String(63), nullable=False),
        sa.Column("version_integer", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("title", sa.String(255), nullable=False, server_default=""),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("state", sa.Integer(), nullable=False, server_default="999"),
        sa.Column("is_official", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("name", "version", name="uq_extensions"),
    )

    op.create_table(
        "backend_users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_name", sa.String(255), nullable=False),
        sa.Column("real_name", sa.String(255), nullable=False, server_default=""),
        sa.Column("email_address", sa.String(255), nullable=False, server_default=""),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("last_login", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_backend_users_user_name", "backend_users", ["user_name"])

    op.create_table(
        "client_extensions",
        sa.Column(
            "client_id",
            sa.Integer(),
            sa.ForeignKey("clients.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "extension_id",
            sa.Integer(),
            sa.ForeignKey("extensions.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("title", sa.String(255), nullable=False, server_default=""),
        sa.Column("state", sa.Integer(), nullable=False, server_default="999"),
        sa.Column("is_loaded", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index(
        "ix_client_extensions_extension_id", "client_extensions", ["extension_id"]
    )

    op.create_table(
        "client_backend_users",
        sa.Column(
            "client_id",
            sa.Integer(),
            sa.ForeignKey("clients.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "backend_user_id",
            sa.Integer(),
            sa.ForeignKey("backend_users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )

    op.create_table(
        "import_times",
        sa.Column("name", sa.String(63), primary_key=True),
        sa.Column(
            "imported_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )


def downgrade() -> None:
    op.drop_table("import_times")
    op.drop_table("client_backend_users")
    op.drop_table("client_extensions")
    op.drop_index("ix_backend_users_user_name", table_name="backend_users")
    op.drop_table("backend_users")
    op.drop_table("extensions")
    op.drop_index("ix_clients_visible", table_name="clients")
    op.drop_table("clients")
    op.drop_table("core_versions")
