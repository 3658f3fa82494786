"""Optimistic mutation pipeline.

Each command applies its local effect synchronously, before its first
await, then performs the remote round trip and patches the log by id when
the answer comes back. Remote failures never escape as exceptions: they are
logged and reported through the return value.
"""

import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from room_events.authority import RemoteAuthority
from room_events.config import StoreSettings
from room_events.log import EventLog
from room_events.models import (
    Event,
    EventFields,
    EventState,
    RemoteAuthorityError,
    new_provisional_id,
)
from room_events.timers import ExpiringSlot

logger = logging.getLogger("room_events.pipeline")

Reload = Callable[[], Awaitable[None]]


class MutationPipeline:
    """Create, rate, undo, soft-delete and restore events of one room.

    Args:
        authority: Remote system of record.
        log: The room's event log; patched in place.
        room_id: Room all commands apply to.
        reload: Coroutine function performing a full snapshot reload.
        settings: Window lengths.
        clock: Local clock used for provisional timestamps.
        on_change: Called after every local change of the log or of the
            undo / restore offers.
    """

    def __init__(
        self,
        authority: RemoteAuthority,
        log: EventLog,
        room_id: str,
        reload: Reload,
        settings: StoreSettings,
        clock: Callable[[], datetime],
        on_change: Optional[Callable[[], None]] = None,
    ) -> None:
        self._authority = authority
        self._log = log
        self._room_id = room_id
        self._reload = reload
        self._clock = clock
        self._on_change = on_change
        self.undo_slot: ExpiringSlot[Event] = ExpiringSlot(
            "undo", settings.undo_window_seconds, on_change=self._changed
        )
        self.restore_slot: ExpiringSlot[str] = ExpiringSlot(
            "restore", settings.restore_window_seconds, on_change=self._changed
        )

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()

    # -- create / undo -------------------------------------------------------

    async def create_event(self, member_id: str) -> Optional[Event]:
        """Record a new event for a member.

        Returns:
            The authoritative event, or None if the authority rejected it.
        """
        provisional = Event(
            id=new_provisional_id(),
            room_id=self._room_id,
            member_id=member_id,
            created_at=self._clock(),
            state=EventState.PROVISIONAL,
        )
        self._log.insert(provisional)
        self._changed()

        try:
            confirmed = await self._authority.insert_event(self._room_id, member_id)
        except RemoteAuthorityError as exc:
            logger.warning("Create for member %s failed: %s", member_id, exc)
            if self._log.remove(provisional.id) is not None:
                self._changed()
            return None

        self._log.promote(provisional.id, confirmed)
        self._changed()
        self.undo_slot.arm(confirmed)
        return confirmed

    @property
    def undo_event(self) -> Optional[Event]:
        return self.undo_slot.value

    async def undo(self) -> bool:
        """Hard-delete the undo-eligible event.

        Returns:
            True if an eligible event was deleted. On remote failure the
            event and its eligibility are kept.
        """
        event = self.undo_slot.value
        if event is None:
            return False

        try:
            await self._authority.delete_event(event.id)
        except RemoteAuthorityError as exc:
            logger.warning("Undo of event %s failed: %s", event.id, exc)
            return False

        self._log.remove(event.id)
        if self.undo_slot.value is not None and self.undo_slot.value.id == event.id:
            self.undo_slot.clear()
        self._changed()
        return True

    def dismiss_undo(self) -> None:
        self.undo_slot.clear()

    # -- ratings -------------------------------------------------------------

    async def update_event_ratings(
        self,
        event_id: str,
        fields: Union[EventFields, Mapping[str, Any]],
    ) -> bool:
        """Send a partial update, patching the local copy first.

        The local patch is a full replacement with the same values the
        authority will echo, so the echo is a no-op. On failure the room is
        reloaded, since the local copy may no longer match.
        """
        update = fields if isinstance(fields, EventFields) else EventFields.model_validate(dict(fields))
        changes = update.changes()

        current = self._log.get(event_id)
        patched = False
        if current is not None and changes:
            patched = self._log.replace(current.with_fields(changes))
            if patched:
                self._changed()

        try:
            await self._authority.update_event(event_id, changes)
        except RemoteAuthorityError as exc:
            logger.warning("Update of event %s failed: %s", event_id, exc)
            if patched:
                await self._reload()
            return False
        return True

    # -- soft delete / restore -----------------------------------------------

    @property
    def restorable_event_id(self) -> Optional[str]:
        return self.restore_slot.value

    async def soft_delete(self, event_id: str, room_id: Optional[str] = None) -> bool:
        """Hide a historical event through the privileged soft-delete call.

        The event leaves the local log at once. Authorization (own record or
        room owner) must be checked by the caller.

        Returns:
            True on success, after which a restore is offered for the
            configured window. On failure the room is reloaded.
        """
        target_room = room_id or self._room_id
        if self._log.remove(event_id) is not None:
            self._changed()

        try:
            await self._authority.soft_delete_event(event_id, target_room)
        except RemoteAuthorityError as exc:
            logger.warning("Soft delete of event %s failed, reloading: %s", event_id, exc)
            await self._reload()
            return False

        logger.info("Soft-deleted event %s", event_id)
        undo = self.undo_slot.value
        if undo is not None and undo.id == event_id:
            self.undo_slot.clear()
        self.restore_slot.arm(event_id)
        return True

    async def restore(self, event_id: str, room_id: Optional[str] = None) -> bool:
        """Undo a soft delete through the privileged restore call.

        On success the room is reloaded, since the record may have changed
        while it was hidden. On failure nothing local is touched.
        """
        target_room = room_id or self._room_id
        try:
            await self._authority.restore_event(event_id, target_room)
        except RemoteAuthorityError as exc:
            logger.warning("Restore of event %s failed: %s", event_id, exc)
            return False

        logger.info("Restored event %s", event_id)
        if self.restore_slot.value == event_id:
            self.restore_slot.clear()
        await self._reload()
        return True

    def dismiss_restore(self) -> None:
        self.restore_slot.clear()

    def cancel_timers(self) -> None:
        """Drop both offers, e.g. when the store closes."""
        self.undo_slot.clear()
        self.restore_slot.clear()
