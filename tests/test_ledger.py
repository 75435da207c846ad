"""
tests/test_ledger.py

Behaviour of the in-memory Ledger.

  SCENARIOS
    Register, caution twice, dismiss once, read (2, 1)
    Non-owner is rejected on every mutation, state unchanged
    Double registration is rejected, record unchanged
    Caution before registration is rejected, nothing registered
    Fresh ledger: no notifications, every read is NotRegistered

  RULES
    Authorization is checked before registration state
    Counters only grow, and only by one per accepted call
    A rejected call emits nothing
    Watchers see notifications in order, even when a watcher mutates
    A failing watcher is logged
"""

import logging

import pytest

from cardledger import (
    AlreadyRegistered,
    Ledger,
    Notification,
    NotificationType,
    NotRegistered,
    ParticipantRecord,
    Unauthorized,
    ValidationError,
)

from journal_helpers import ATTACKER, OWNER, P1, P2


def _snapshot(ledger: Ledger):
    return (
        {p: ledger.get_participant(p) for p in ledger.participants()},
        ledger.notifications(),
    )


# ─────────────────────────────────────────────────────────────
# Scenarios
# ─────────────────────────────────────────────────────────────

class TestScenarios:

    def test_owner_registers_cautions_and_dismisses(self, ledger):
        ledger.register_participant(OWNER, P1)
        ledger.issue_caution(OWNER, P1)
        ledger.issue_caution(OWNER, P1)
        ledger.issue_dismissal(OWNER, P1)

        assert ledger.get_record(P1) == (2, 1)
        assert ledger.notifications() == [
            Notification(NotificationType.PARTICIPANT_REGISTERED, P1, None, 0),
            Notification(NotificationType.CAUTION_ISSUED,         P1, 1,    1),
            Notification(NotificationType.CAUTION_ISSUED,         P1, 2,    2),
            Notification(NotificationType.DISMISSAL_ISSUED,       P1, 1,    3),
        ]

    def test_non_owner_is_rejected_on_every_mutation(self, ledger):
        ledger.register_participant(OWNER, P1)
        before = _snapshot(ledger)

        with pytest.raises(Unauthorized):
            ledger.issue_caution(ATTACKER, P1)
        with pytest.raises(Unauthorized):
            ledger.issue_dismissal(ATTACKER, P1)
        with pytest.raises(Unauthorized):
            ledger.register_participant(ATTACKER, P2)

        assert _snapshot(ledger) == before
        assert ledger.get_record(P1) == (0, 0)
        assert not ledger.is_registered(P2)

    def test_second_registration_is_rejected(self, ledger):
        ledger.register_participant(OWNER, P1)
        ledger.issue_caution(OWNER, P1)

        with pytest.raises(AlreadyRegistered):
            ledger.register_participant(OWNER, P1)

        assert ledger.get_record(P1) == (1, 0)
        assert len(ledger.notifications()) == 2

    def test_caution_before_registration_is_rejected(self, ledger):
        with pytest.raises(NotRegistered):
            ledger.issue_caution(OWNER, P2)

        with pytest.raises(NotRegistered):
            ledger.get_record(P2)
        assert ledger.participants() == []
        assert ledger.notifications() == []

    def test_fresh_ledger_is_empty(self, ledger):
        assert ledger.owner == OWNER
        assert ledger.notifications() == []
        assert ledger.participants() == []
        for participant in (P1, P2, OWNER):
            with pytest.raises(NotRegistered):
                ledger.get_record(participant)


# ─────────────────────────────────────────────────────────────
# Authorization
# ─────────────────────────────────────────────────────────────

class TestAuthorization:

    @pytest.mark.parametrize("operation", [
        "register_participant", "issue_caution", "issue_dismissal",
    ])
    def test_unauthorized_wins_over_unregistered(self, ledger, operation):
        with pytest.raises(Unauthorized):
            getattr(ledger, operation)(ATTACKER, P1)

    @pytest.mark.parametrize("operation", [
        "register_participant", "issue_caution", "issue_dismissal",
    ])
    def test_unauthorized_wins_over_registered(self, ledger, operation):
        ledger.register_participant(OWNER, P1)
        with pytest.raises(Unauthorized):
            getattr(ledger, operation)(ATTACKER, P1)

    def test_participant_cannot_act_on_own_record(self, ledger):
        ledger.register_participant(OWNER, P1)
        with pytest.raises(Unauthorized):
            ledger.issue_caution(P1, P1)

    def test_owner_identity_is_compared_exactly(self, ledger):
        ledger.register_participant(OWNER, P1)
        for near_miss in (OWNER.upper(), OWNER + " ", " " + OWNER):
            with pytest.raises(Unauthorized):
                ledger.issue_caution(near_miss, P1)

    def test_owner_can_register_itself(self, ledger):
        ledger.register_participant(OWNER, OWNER)
        assert ledger.get_record(OWNER) == (0, 0)

    def test_unauthorized_error_names_caller_and_operation(self, ledger):
        with pytest.raises(Unauthorized) as exc_info:
            ledger.issue_dismissal(ATTACKER, P1)
        assert exc_info.value.details == {
            "caller":    ATTACKER,
            "operation": NotificationType.DISMISSAL_ISSUED,
        }

    def test_owner_is_fixed(self, ledger):
        with pytest.raises(AttributeError):
            ledger.owner = ATTACKER


# ─────────────────────────────────────────────────────────────
# Registration state
# ─────────────────────────────────────────────────────────────

class TestRegistration:

    def test_new_record_is_clean(self, ledger):
        notification = ledger.register_participant(OWNER, P1)

        assert notification.kind == NotificationType.PARTICIPANT_REGISTERED
        assert notification.total is None
        assert ledger.get_participant(P1) == ParticipantRecord(
            participant=P1, caution_count=0, dismissal_count=0, registered=True,
        )

    def test_dismissal_before_registration_is_rejected(self, ledger):
        with pytest.raises(NotRegistered) as exc_info:
            ledger.issue_dismissal(OWNER, P1)
        assert exc_info.value.details == {"participant": P1}
        assert not ledger.is_registered(P1)

    def test_repeated_registration_is_rejected_every_time(self, ledger):
        ledger.register_participant(OWNER, P1)
        for _ in range(3):
            with pytest.raises(AlreadyRegistered):
                ledger.register_participant(OWNER, P1)
        assert len(ledger.notifications()) == 1

    def test_participants_keep_registration_order(self, ledger):
        for participant in (P2, P1, "player-3"):
            ledger.register_participant(OWNER, participant)
        ledger.issue_caution(OWNER, P1)
        assert ledger.participants() == [P2, P1, "player-3"]

    def test_records_are_independent(self, ledger):
        ledger.register_participant(OWNER, P1)
        ledger.register_participant(OWNER, P2)
        ledger.issue_caution(OWNER, P1)
        ledger.issue_dismissal(OWNER, P2)
        ledger.issue_dismissal(OWNER, P2)

        assert ledger.get_record(P1) == (1, 0)
        assert ledger.get_record(P2) == (0, 2)

    @pytest.mark.parametrize("bad", ["", "   ", None, 7])
    def test_malformed_participant_is_rejected(self, ledger, bad):
        with pytest.raises(ValidationError):
            ledger.register_participant(OWNER, bad)
        assert ledger.notifications() == []

    @pytest.mark.parametrize("bad", ["", "  ", None])
    def test_malformed_owner_is_rejected(self, bad):
        with pytest.raises(ValidationError):
            Ledger(bad)


# ─────────────────────────────────────────────────────────────
# Counters
# ─────────────────────────────────────────────────────────────

class TestCounters:

    def test_counts_match_accepted_calls(self, ledger):
        ledger.register_participant(OWNER, P1)
        for _ in range(7):
            ledger.issue_caution(OWNER, P1)
        for _ in range(3):
            ledger.issue_dismissal(OWNER, P1)
        assert ledger.get_record(P1) == (7, 3)

    def test_notification_total_is_post_increment(self, ledger):
        ledger.register_participant(OWNER, P1)
        totals = [ledger.issue_caution(OWNER, P1).total for _ in range(4)]
        assert totals == [1, 2, 3, 4]

    def test_counters_never_decrease_across_rejections(self, ledger):
        ledger.register_participant(OWNER, P1)
        history = []
        for caller in (OWNER, ATTACKER, OWNER, ATTACKER, OWNER):
            try:
                ledger.issue_caution(caller, P1)
            except Unauthorized:
                pass
            history.append(ledger.get_record(P1))
        assert history == [(1, 0), (1, 0), (2, 0), (2, 0), (3, 0)]

    def test_dismissal_does_not_reset_cautions(self, ledger):
        ledger.register_participant(OWNER, P1)
        ledger.issue_caution(OWNER, P1)
        ledger.issue_caution(OWNER, P1)
        ledger.issue_dismissal(OWNER, P1)
        ledger.issue_caution(OWNER, P1)
        assert ledger.get_record(P1) == (3, 1)

    def test_stats(self, ledger):
        ledger.register_participant(OWNER, P1)
        ledger.register_participant(OWNER, P2)
        ledger.issue_caution(OWNER, P1)
        ledger.issue_dismissal(OWNER, P2)
        ledger.issue_dismissal(OWNER, P2)

        assert ledger.get_stats() == {
            "owner":            OWNER,
            "participants":     2,
            "notifications":    5,
            "total_cautions":   1,
            "total_dismissals": 2,
            "journal":          None,
        }


# ─────────────────────────────────────────────────────────────
# Notifications and watchers
# ─────────────────────────────────────────────────────────────

class TestNotifications:

    def test_sequence_numbers_are_contiguous(self, ledger):
        ledger.register_participant(OWNER, P1)
        ledger.register_participant(OWNER, P2)
        ledger.issue_caution(OWNER, P2)
        with pytest.raises(AlreadyRegistered):
            ledger.register_participant(OWNER, P2)
        ledger.issue_dismissal(OWNER, P1)

        assert [n.sequence for n in ledger.notifications()] == [0, 1, 2, 3]

    def test_payloads(self, ledger):
        register = ledger.register_participant(OWNER, P1)
        caution  = ledger.issue_caution(OWNER, P1)
        dismiss  = ledger.issue_dismissal(OWNER, P1)

        assert register.to_payload() == {"participant": P1}
        assert caution.to_payload()  == {"participant": P1, "total_cautions": 1}
        assert dismiss.to_payload()  == {"participant": P1, "total_dismissals": 1}

    def test_notifications_returns_a_copy(self, ledger):
        ledger.register_participant(OWNER, P1)
        ledger.notifications().clear()
        assert len(ledger.notifications()) == 1

    def test_watcher_sees_every_accepted_call_in_order(self, ledger):
        seen = []
        ledger.subscribe(seen.append)

        ledger.register_participant(OWNER, P1)
        with pytest.raises(Unauthorized):
            ledger.issue_caution(ATTACKER, P1)
        ledger.issue_caution(OWNER, P1)

        assert seen == ledger.notifications()
        assert [n.kind for n in seen] == [
            NotificationType.PARTICIPANT_REGISTERED,
            NotificationType.CAUTION_ISSUED,
        ]

    def test_unsubscribed_watcher_sees_nothing_more(self, ledger):
        seen = []
        unsubscribe = ledger.subscribe(seen.append)
        ledger.register_participant(OWNER, P1)
        unsubscribe()
        unsubscribe()
        ledger.issue_caution(OWNER, P1)
        assert len(seen) == 1

    def test_watcher_can_read_the_ledger(self, ledger):
        reads = []
        ledger.subscribe(lambda n: reads.append(ledger.get_record(n.participant)))

        ledger.register_participant(OWNER, P1)
        ledger.issue_caution(OWNER, P1)
        assert reads == [(0, 0), (1, 0)]

    def test_failing_watcher_is_logged_and_does_not_undo_the_call(self, ledger, caplog):
        def broken(notification):
            raise RuntimeError("watcher down")

        seen = []
        ledger.subscribe(broken)
        ledger.subscribe(seen.append)

        with caplog.at_level(logging.ERROR, logger="cardledger"):
            notification = ledger.register_participant(OWNER, P1)

        assert ledger.is_registered(P1)
        assert seen == [notification]
        assert "watcher down" in caplog.text

    def test_watcher_mutation_is_delivered_after_current(self, ledger):
        first_seen  = []
        second_seen = []

        def caution_on_register(notification):
            first_seen.append(notification.sequence)
            if notification.kind == NotificationType.PARTICIPANT_REGISTERED:
                nested = ledger.issue_caution(OWNER, notification.participant)
                assert nested.sequence == notification.sequence + 1

        ledger.subscribe(caution_on_register)
        ledger.subscribe(lambda n: second_seen.append(n.sequence))

        ledger.register_participant(OWNER, P1)

        assert first_seen == [0, 1]
        assert second_seen == [0, 1]
        assert ledger.get_record(P1) == (1, 0)

    def test_delivery_resumes_after_watcher_mutation(self, ledger):
        seen = []

        def caution_once(notification):
            if notification.kind == NotificationType.PARTICIPANT_REGISTERED:
                ledger.issue_caution(OWNER, notification.participant)

        ledger.subscribe(caution_once)
        ledger.subscribe(seen.append)

        ledger.register_participant(OWNER, P1)
        ledger.issue_dismissal(OWNER, P1)

        assert [n.sequence for n in seen] == [0, 1, 2]
        assert seen == ledger.notifications()

    def test_rejections_are_logged_as_warnings(self, ledger, caplog):
        with caplog.at_level(logging.WARNING, logger="cardledger"):
            with pytest.raises(Unauthorized):
                ledger.register_participant(ATTACKER, P1)
            with pytest.raises(NotRegistered):
                ledger.issue_caution(OWNER, P1)

        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 2
