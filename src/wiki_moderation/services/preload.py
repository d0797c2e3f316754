# src/wiki_moderation/services/preload.py
"""Preload slots: the one pending change an author may keep editing per page."""

from __future__ import annotations

import logging
import secrets

from wiki_moderation.models import ModerationEntry
from wiki_moderation.services.actor import Actor
from wiki_moderation.services.entry_store import EntryStore

logger = logging.getLogger(__name__)

# Neither character can appear in a user name, so the two kinds of ids never collide.
LOGGED_IN_PREFIX = "["
ANONYMOUS_PREFIX = "]"


def new_session_token() -> str:
    """Return a fresh token identifying an anonymous editing session."""
    return secrets.token_hex(16)


class PreloadSlotIndex:
    """Find the pending entry that a repeat edit should update in place."""

    def __init__(self, store: EntryStore) -> None:
        self.store = store

    @staticmethod
    def get_id(actor: Actor, session_token: str | None, *, create: bool = False) -> str | None:
        """Return the preload id of ``actor``.

        Registered users are identified by name, anonymous visitors by their
        session token. Without a token, a new one is issued when ``create``
        is set; otherwise None is returned.
        """
        if actor.logged_in:
            return LOGGED_IN_PREFIX + actor.name
        if not session_token:
            if not create:
                return None
            session_token = new_session_token()
        return ANONYMOUS_PREFIX + session_token

    @staticmethod
    def session_token_of(preload_id: str) -> str | None:
        """Return the anonymous session token encoded in ``preload_id``, if any."""
        if preload_id.startswith(ANONYMOUS_PREFIX):
            return preload_id[len(ANONYMOUS_PREFIX):]
        return None

    def find_slot(self, preload_id: str, namespace: int, title: str) -> ModerationEntry | None:
        """Return the newest preloadable entry for this actor and page.

        Concurrent edits may leave more than one preloadable entry behind;
        the older ones are stale and are left for moderators to handle.
        """
        rows = self.store.preloadable_rows(preload_id, namespace, title)
        if not rows:
            return None
        if len(rows) > 1:
            logger.info(
                "Found %d preloadable entries for %s on %s; using #%d",
                len(rows),
                preload_id,
                title,
                rows[0].id,
            )
        return rows[0]
