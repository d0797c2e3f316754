"""moderation schema

Revision ID: 5c1e2a9d7b40
Revises:
Create Date: 2026-10-18 09:12:44.310215

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "5c1e2a9d7b40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the wiki content tables and the moderation queue."""
    op.create_table(
        "user",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("rights", sa.Text(), nullable=False),
        sa.Column("registration", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )
    op.create_table(
        "page",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("namespace", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("latest", sa.BigInteger(), nullable=False),
        sa.Column("content_model", sa.String(length=32), nullable=False),
        sa.Column("is_redirect", sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("namespace", "title", name="uq_page_title"),
    )
    op.create_table(
        "revision",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("page_id", sa.Integer(), nullable=False),
        sa.Column("parent_id", sa.BigInteger(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("user_text", sa.String(length=255), nullable=False),
        sa.Column("comment", sa.Text(), nullable=False),
        sa.Column("minor", sa.Boolean(), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("size", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["page_id"], ["page.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_revision_page_id", "revision", ["page_id"])

    op.create_table(
        "recentchanges",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("type", sa.Integer(), nullable=False),
        sa.Column("namespace", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("user_text", sa.String(length=255), nullable=False),
        sa.Column("comment", sa.Text(), nullable=False),
        sa.Column("minor", sa.Boolean(), nullable=False),
        sa.Column("bot", sa.Boolean(), nullable=False),
        sa.Column("this_oldid", sa.BigInteger(), nullable=False),
        sa.Column("last_oldid", sa.BigInteger(), nullable=False),
        sa.Column("logid", sa.BigInteger(), nullable=False),
        sa.Column("log_type", sa.String(length=32), nullable=True),
        sa.Column("log_action", sa.String(length=32), nullable=True),
        sa.Column("ip", sa.String(length=64), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_recentchanges_title", "recentchanges", ["namespace", "title"])
    op.create_table(
        "change_tag",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tag", sa.String(length=255), nullable=False),
        sa.Column("rc_id", sa.BigInteger(), nullable=True),
        sa.Column("rev_id", sa.BigInteger(), nullable=True),
        sa.Column("log_id", sa.BigInteger(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "logging",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("action", sa.String(length=32), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("performer_id", sa.Integer(), nullable=False),
        sa.Column("performer_text", sa.String(length=255), nullable=False),
        sa.Column("namespace", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("comment", sa.Text(), nullable=False),
        sa.Column("params", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "cu_changes",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("rc_id", sa.BigInteger(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("namespace", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("user_text", sa.String(length=255), nullable=False),
        sa.Column("this_oldid", sa.BigInteger(), nullable=False),
        sa.Column("ip", sa.String(length=64), nullable=True),
        sa.Column("ip_hex", sa.String(length=35), nullable=True),
        sa.Column("agent", sa.Text(), nullable=True),
        sa.Column("xff", sa.Text(), nullable=True),
        sa.Column("xff_hex", sa.String(length=35), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_cu_changes_user_text", "cu_changes", ["user_text"])
    op.create_table(
        "watchlist",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("namespace", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["user.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "namespace", "title", name="uq_watchlist_item"),
    )
    op.create_table(
        "image",
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("data", sa.LargeBinary(), nullable=False),
        sa.Column("sha1", sa.String(length=40), nullable=False),
        sa.Column("size", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("user_text", sa.String(length=255), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("name"),
    )

    op.create_table(
        "moderation",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("user_text", sa.String(length=255), nullable=False),
        sa.Column("cur_id", sa.Integer(), nullable=False),
        sa.Column("namespace", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("page2_namespace", sa.Integer(), nullable=False),
        sa.Column("page2_title", sa.String(length=255), nullable=False),
        sa.Column("comment", sa.Text(), nullable=False),
        sa.Column("minor", sa.Boolean(), nullable=False),
        sa.Column("bot", sa.Boolean(), nullable=False),
        sa.Column("new", sa.Boolean(), nullable=False),
        sa.Column("last_oldid", sa.Integer(), nullable=False),
        sa.Column("ip", sa.String(length=64), nullable=True),
        sa.Column("header_xff", sa.Text(), nullable=True),
        sa.Column("header_ua", sa.Text(), nullable=True),
        sa.Column("old_len", sa.Integer(), nullable=False),
        sa.Column("new_len", sa.Integer(), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("stash_key", sa.String(length=64), nullable=True),
        sa.Column("tags", sa.Text(), nullable=True),
        sa.Column("preload_id", sa.String(length=255), nullable=False),
        sa.Column("preloadable", sa.Boolean(), nullable=False),
        sa.Column("rejected", sa.Boolean(), nullable=False),
        sa.Column("rejected_by_user", sa.Integer(), nullable=False),
        sa.Column("rejected_by_user_text", sa.String(length=255), nullable=True),
        sa.Column("rejected_batch", sa.Boolean(), nullable=False),
        sa.Column("rejected_auto", sa.Boolean(), nullable=False),
        sa.Column("conflict", sa.Boolean(), nullable=False),
        sa.Column("merged_revid", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_moderation_preload",
        "moderation",
        ["preload_id", "namespace", "title", "preloadable"],
    )
    op.create_index("ix_moderation_user_text", "moderation", ["user_text"])
    op.create_table(
        "moderation_block",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("address", sa.String(length=255), nullable=False),
        sa.Column("blocked_by_user", sa.Integer(), nullable=False),
        sa.Column("blocked_by_user_text", sa.String(length=255), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("address"),
    )
    op.create_table(
        "moderation_stash",
        sa.Column("stash_key", sa.String(length=64), nullable=False),
        sa.Column("filename", sa.String(length=255), nullable=False),
        sa.Column("data", sa.LargeBinary(), nullable=False),
        sa.Column("sha1", sa.String(length=40), nullable=False),
        sa.Column("size", sa.Integer(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("stash_key"),
    )


def downgrade() -> None:
    """Drop every table created by this revision."""
    op.drop_table("moderation_stash")
    op.drop_table("moderation_block")
    op.drop_index("ix_moderation_user_text", table_name="moderation")
    op.drop_index("ix_moderation_preload", table_name="moderation")
    op.drop_table("moderation")
    op.drop_table("image")
    op.drop_table("watchlist")
    op.drop_index("ix_cu_changes_user_text", table_name="cu_changes")
    op.drop_table("cu_changes")
    op.drop_table("logging")
    op.drop_table("change_tag")
    op.drop_index("ix_recentchanges_title", table_name="recentchanges")
    op.drop_table("recentchanges")
    op.drop_index("ix_revision_page_id", table_name="revision")
    op.drop_table("revision")
    op.drop_table("page")
    op.drop_table("user")
