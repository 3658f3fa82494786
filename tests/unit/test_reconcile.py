"""Unit tests for push-stream reconciliation."""
import logging

import pytest
from pydantic import ValidationError as PydanticValidationError

from room_events.authority import ChangeNotification, ChangeType
from room_events.log import EventLog
from room_events.models import ValidationError
from room_events.reconcile import Reconciler, ReconcileOutcome, apply_change

from conftest import ROOM_ID, make_event


def insert(event):
    return ChangeNotification(change_type=ChangeType.INSERT, entity=event)


def update(event):
    return ChangeNotification(change_type=ChangeType.UPDATE, entity=event)


def delete(event_id):
    return ChangeNotification(change_type=ChangeType.DELETE, event_id=event_id)


class TestChangeNotification:
    """Tests for notification validation."""

    def test_event_id_filled_from_entity(self):
        event = make_event()
        assert insert(event).event_id == event.id

    def test_insert_requires_entity(self):
        with pytest.raises(PydanticValidationError):
            ChangeNotification(change_type=ChangeType.INSERT, event_id="x")

    def test_delete_requires_id(self):
        with pytest.raises(PydanticValidationError):
            ChangeNotification(change_type=ChangeType.DELETE)

    def test_mismatched_id_rejected(self):
        with pytest.raises(PydanticValidationError):
            ChangeNotification(change_type=ChangeType.UPDATE, event_id="other", entity=make_event())

    def test_room_id_from_entity(self):
        assert insert(make_event()).room_id == ROOM_ID
        assert delete("x").room_id is None


class TestApplyChange:
    """Tests for the id-keyed reconciliation rules."""

    def test_insert_appends(self):
        log = EventLog()
        event = make_event()
        assert apply_change(log, insert(event)) is ReconcileOutcome.APPENDED
        assert log.get(event.id) == event

    def test_insert_duplicate_ignored(self):
        event = make_event()
        log = EventLog([event])
        assert apply_change(log, insert(event)) is ReconcileOutcome.IGNORED_DUPLICATE
        assert len(log) == 1

    def test_insert_duplicate_does_not_overwrite(self):
        event = make_event(smell=2)
        log = EventLog([event])
        apply_change(log, insert(event.model_copy(update={"smell": 0})))
        assert log.get(event.id).smell == 2

    def test_insert_deleted_ignored(self):
        log = EventLog()
        assert apply_change(log, insert(make_event(is_deleted=True))) is ReconcileOutcome.IGNORED_DELETED
        assert len(log) == 0

    def test_update_replaces_in_full(self):
        event = make_event(smell=1, size=1)
        log = EventLog([event])
        newer = event.model_copy(update={"smell": -1, "size": 0})
        assert apply_change(log, update(newer)) is ReconcileOutcome.REPLACED
        assert log.get(event.id) == newer

    def test_update_same_value_is_noop(self):
        event = make_event()
        log = EventLog([event])
        assert apply_change(log, update(event)) is ReconcileOutcome.NOOP

    def test_update_unknown_id_is_noop(self):
        log = EventLog()
        assert apply_change(log, update(make_event())) is ReconcileOutcome.NOOP
        assert len(log) == 0

    def test_update_soft_deleted_removes(self):
        event = make_event()
        log = EventLog([event])
        outcome = apply_change(log, update(event.model_copy(update={"is_deleted": True})))
        assert outcome is ReconcileOutcome.REMOVED
        assert event.id not in log

    def test_update_soft_deleted_absent_is_noop(self):
        log = EventLog()
        outcome = apply_change(log, update(make_event(is_deleted=True)))
        assert outcome is ReconcileOutcome.NOOP

    def test_delete_removes(self):
        event = make_event()
        log = EventLog([event])
        assert apply_change(log, delete(event.id)) is ReconcileOutcome.REMOVED
        assert len(log) == 0

    def test_delete_absent_is_noop(self):
        assert apply_change(EventLog(), delete("missing")) is ReconcileOutcome.NOOP

    def test_replay_is_idempotent(self):
        event = make_event()
        log = EventLog()
        stream = [insert(event), update(event.model_copy(update={"effort": 2}))]
        for notification in stream + stream:
            apply_change(log, notification)
        assert len(log) == 1
        assert log.get(event.id).effort == 2

    @pytest.mark.parametrize("change_type", [ChangeType.INSERT, ChangeType.UPDATE])
    def test_unvalidated_notification_without_entity_rejected(self, change_type):
        notification = ChangeNotification.model_construct(change_type=change_type, event_id="x")
        with pytest.raises(ValidationError, match="carries no entity"):
            apply_change(EventLog(), notification)


class TestReconciler:
    """Tests for the Reconciler wrapper."""

    def test_foreign_room_dropped(self):
        log = EventLog()
        reconciler = Reconciler(log, ROOM_ID)
        outcome = reconciler(insert(make_event(room_id="room-other")))
        assert outcome is ReconcileOutcome.IGNORED_FOREIGN_ROOM
        assert len(log) == 0

    def test_callback_only_on_change(self):
        seen = []
        event = make_event()
        reconciler = Reconciler(EventLog(), ROOM_ID, on_applied=seen.append)
        reconciler(insert(event))
        reconciler(insert(event))
        reconciler(delete("missing"))
        assert seen == [ReconcileOutcome.APPENDED]

    def test_outcomes_logged_at_debug(self, caplog):
        reconciler = Reconciler(EventLog(), ROOM_ID)
        with caplog.at_level(logging.DEBUG, logger="room_events.reconcile"):
            reconciler(delete("missing"))
        assert "noop" in caplog.text

    def test_changed_flag(self):
        assert ReconcileOutcome.REMOVED.changed
        assert not ReconcileOutcome.IGNORED_DUPLICATE.changed
