# src/wiki_moderation/services/block_check.py
"""Moderation blocklist.

Changes by blocked users are queued as already rejected, so they never
reach the pending folder. Blocked users are not told about it.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from wiki_moderation.models import ModerationBlock
from wiki_moderation.services.actor import Actor


class BlockList:
    """Query and edit the ``moderation_block`` table."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def is_blocked(self, actor: Actor) -> bool:
        return self.is_address_blocked(actor.name)

    def is_address_blocked(self, address: str) -> bool:
        return (
            self.db.query(ModerationBlock)
            .filter(ModerationBlock.address == address)
            .first()
            is not None
        )

    def block(self, address: str, moderator: Actor) -> bool:
        """Block ``address`` (a user name or an IP).

        Returns:
            False if it was already blocked.
        """
        if self.is_address_blocked(address):
            return False
        self.db.add(
            ModerationBlock(
                address=address,
                blocked_by_user=moderator.id,
                blocked_by_user_text=moderator.name,
            )
        )
        self.db.flush()
        return True

    def unblock(self, address: str) -> bool:
        """Remove ``address`` from the blocklist; False if it wasn't blocked."""
        deleted = (
            self.db.query(ModerationBlock)
            .filter(ModerationBlock.address == address)
            .delete(synchronize_session="fetch")
        )
        return deleted > 0
