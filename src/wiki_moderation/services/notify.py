# src/wiki_moderation/services/notify.py
"""Moderator notifications about newly queued changes.

Moderators are shown a "new changes await moderation" notice while the
newest pending change is more recent than their last visit to the queue.
The time of that newest change is cached in Redis, with an in-process cache
used when Redis is not configured or unreachable.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from functools import lru_cache
from threading import Lock

import redis
from sqlalchemy.orm import Session

from wiki_moderation.core.settings import Settings, settings
from wiki_moderation.db.time import as_utc
from wiki_moderation.services.entry_store import EntryStore

logger = logging.getLogger(__name__)

PENDING_TIME_KEY = "moderation:pending-time"
# Stored instead of a timestamp when nothing is pending.
NOTHING_PENDING = "-"

# (to, from, subject, body)
Mailer = Callable[[str, str, str, str], None]


class ModeratorNotifier:
    """Keep moderators informed about the pending queue."""

    def __init__(
        self,
        config: Settings,
        *,
        redis_client: redis.Redis | None = None,
        mailer: Mailer | None = None,
    ) -> None:
        self.config = config
        self.mailer = mailer
        self._redis = redis_client
        if self._redis is None and config.redis_url:
            self._redis = redis.from_url(config.redis_url)  # type: ignore[no-untyped-call]
        self._lock = Lock()
        self._local: dict[str, str] = {}

    def _get(self, key: str) -> str | None:
        if self._redis is not None:
            try:
                value = self._redis.get(key)
                return value.decode() if isinstance(value, bytes) else value
            except redis.RedisError:
                logger.warning("Redis unavailable, using in-process cache", exc_info=True)
                self._redis = None
        with self._lock:
            return self._local.get(key)

    def _set(self, key: str, value: str) -> None:
        if self._redis is not None:
            try:
                self._redis.set(key, value, ex=self.config.pending_time_cache_ttl_seconds)
                return
            except redis.RedisError:
                logger.warning("Redis unavailable, using in-process cache", exc_info=True)
                self._redis = None
        with self._lock:
            self._local[key] = value

    def _delete(self, key: str) -> None:
        if self._redis is not None:
            try:
                self._redis.delete(key)
                return
            except redis.RedisError:
                logger.warning("Redis unavailable, using in-process cache", exc_info=True)
                self._redis = None
        with self._lock:
            self._local.pop(key, None)

    def set_pending_time(self, timestamp: datetime) -> None:
        """Record that a change was queued at ``timestamp``."""
        self._set(PENDING_TIME_KEY, as_utc(timestamp).isoformat())

    def invalidate_pending_time(self) -> None:
        """Forget the cached time; the next read recomputes it."""
        self._delete(PENDING_TIME_KEY)

    def get_pending_time(self, db: Session) -> datetime | None:
        """Return when the newest pending change was queued, or None."""
        cached = self._get(PENDING_TIME_KEY)
        if cached is not None:
            return None if cached == NOTHING_PENDING else datetime.fromisoformat(cached)

        latest = EntryStore(db).latest_pending_timestamp()
        self._set(PENDING_TIME_KEY, latest.isoformat() if latest else NOTHING_PENDING)
        return latest

    def should_email(self, new_page: bool) -> bool:
        """Return True if a change of this kind warrants an e-mail to moderators."""
        if not self.config.moderation_notification_enable:
            return False
        return new_page or not self.config.moderation_notification_new_only

    def send_email(self, title: str, author: str, entry_id: int) -> None:
        """Tell moderators by e-mail that ``author`` changed ``title``."""
        recipient = self.config.moderation_email
        sender = self.config.password_sender
        if not recipient or not sender:
            logger.warning("Moderation e-mail requested but no addresses are configured")
            return
        if self.mailer is None:
            logger.info("No mailer configured; skipping notification about entry #%d", entry_id)
            return

        subject = "New changes await moderation"
        body = (
            f"User {author} changed the page {title}.\n"
            f"Review the change as moderation entry #{entry_id}."
        )
        self.mailer(recipient, sender, subject, body)


@lru_cache(maxsize=1)
def get_notifier() -> ModeratorNotifier:
    """Return the process-wide notifier built from the application settings."""
    return ModeratorNotifier(settings)
