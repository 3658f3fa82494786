"""Realtime reconciliation of the room's push stream.

Notifications arrive at least once and in any order, possibly while a local
mutation of the same event is still in flight. Every rule below keys off
event id equality, so replays and reorderings are harmless:

- insert: ignored when the id is already present, otherwise appended.
- update: a soft-deleted entity removes the id; otherwise the entity with
  that id is replaced in full. Unknown ids are left alone.
- delete: removes the id; absence is not an error.
"""

import logging
from enum import Enum
from typing import Callable, Optional

from room_events.authority import ChangeNotification, ChangeType
from room_events.log import EventLog
from room_events.models import ValidationError

logger = logging.getLogger("room_events.reconcile")


class ReconcileOutcome(str, Enum):
    APPENDED = "appended"
    REPLACED = "replaced"
    REMOVED = "removed"
    IGNORED_DUPLICATE = "ignored_duplicate"
    IGNORED_DELETED = "ignored_deleted"
    IGNORED_FOREIGN_ROOM = "ignored_foreign_room"
    NOOP = "noop"

    @property
    def changed(self) -> bool:
        return self in _CHANGING_OUTCOMES


_CHANGING_OUTCOMES = frozenset({
    ReconcileOutcome.APPENDED,
    ReconcileOutcome.REPLACED,
    ReconcileOutcome.REMOVED,
})


def apply_change(log: EventLog, notification: ChangeNotification) -> ReconcileOutcome:
    """Apply one notification to the log. Idempotent under replay."""
    change_type = notification.change_type
    entity = notification.entity

    if change_type is ChangeType.DELETE:
        if log.remove(notification.event_id) is not None:
            return ReconcileOutcome.REMOVED
        return ReconcileOutcome.NOOP

    if entity is None:
        raise ValidationError(
            f"{change_type.value} notification for {notification.event_id} carries no entity"
        )

    if change_type is ChangeType.INSERT:
        if entity.id in log:
            return ReconcileOutcome.IGNORED_DUPLICATE
        if entity.is_deleted:
            return ReconcileOutcome.IGNORED_DELETED
        log.insert(entity)
        return ReconcileOutcome.APPENDED

    if entity.is_deleted:
        # Soft delete travels as an update but reads as a removal.
        if log.remove(entity.id) is not None:
            return ReconcileOutcome.REMOVED
        return ReconcileOutcome.NOOP
    if log.replace(entity):
        return ReconcileOutcome.REPLACED
    return ReconcileOutcome.NOOP


class Reconciler:
    """Feeds a room's push stream into its event log.

    Args:
        log: The log to patch.
        room_id: Notifications for other rooms are dropped.
        on_applied: Called with the outcome whenever the log changed.
    """

    def __init__(
        self,
        log: EventLog,
        room_id: str,
        on_applied: Optional[Callable[[ReconcileOutcome], None]] = None,
    ) -> None:
        self.log = log
        self.room_id = room_id
        self._on_applied = on_applied

    def __call__(self, notification: ChangeNotification) -> ReconcileOutcome:
        return self.handle(notification)

    def handle(self, notification: ChangeNotification) -> ReconcileOutcome:
        room_id = notification.room_id
        if room_id is not None and room_id != self.room_id:
            outcome = ReconcileOutcome.IGNORED_FOREIGN_ROOM
        else:
            outcome = apply_change(self.log, notification)

        logger.debug(
            "%s %s -> %s",
            notification.change_type.value,
            notification.event_id,
            outcome.value,
        )
        if outcome.changed and self._on_applied is not None:
            self._on_applied(outcome)
        return outcome
