# src/wiki_moderation/services/can_skip.py
"""Decide whether an action is exempt from moderation."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from wiki_moderation.core.settings import Settings
from wiki_moderation.services.actor import RIGHT_ROLLBACK, RIGHT_SKIP_MODERATION, Actor


class SkipPolicy:
    """Skip rules over configuration and the actor's rights.

    The policy also carries the approve mode flag. While an approval is
    being replayed every check returns True, so the replayed change is not
    queued again. Share one instance between the interception pipeline and
    the approval engine of a request.
    """

    def __init__(self, config: Settings) -> None:
        self.config = config
        self._in_approve = False

    @property
    def in_approve_mode(self) -> bool:
        return self._in_approve

    def enter_approve_mode(self) -> None:
        self._in_approve = True

    def exit_approve_mode(self) -> None:
        self._in_approve = False

    @contextmanager
    def approve_mode(self) -> Iterator[None]:
        """Hold approve mode for the duration of the block.

        Nested use keeps the flag set until the outermost block exits.
        """
        previous = self._in_approve
        self._in_approve = True
        try:
            yield
        finally:
            self._in_approve = previous

    def can_skip(self, actor: Actor, namespace: int, namespace2: int | None = None) -> bool:
        """Return True if ``actor`` may change pages in ``namespace`` without review.

        Args:
            actor: Performer of the action.
            namespace: Namespace of the affected page.
            namespace2: Target namespace of a move. When it differs from
                ``namespace``, both must be unmoderated for the move to skip.

        Returns:
            True if the action bypasses the moderation queue.
        """
        # Rollback implies trust, so it also allows skipping.
        if (
            not self.config.moderation_enable
            or self._in_approve
            or actor.is_allowed(RIGHT_SKIP_MODERATION)
            or actor.is_allowed(RIGHT_ROLLBACK)
        ):
            return True

        can_skip = self.can_skip_in_namespace(namespace)
        if can_skip and namespace2 is not None and namespace2 != namespace:
            can_skip = self.can_skip_in_namespace(namespace2)
        return can_skip

    def can_skip_in_namespace(self, namespace: int) -> bool:
        """Return True if ``namespace`` is not moderated."""
        if namespace in self.config.moderation_ignored_in_namespaces:
            return True
        only = self.config.moderation_only_in_namespaces
        return bool(only) and namespace not in only
