"""
tests/test_concurrency.py

Concurrency safety for Ledger.
Simultaneous calls from many threads must behave as if they ran one at a
time: no lost increments, no duplicated registrations, no corrupt journal.

Run:
    pytest tests/test_concurrency.py -v --tb=short
"""

import threading

from cardledger import AlreadyRegistered, Ledger, ReplayEngine, Unauthorized

from journal_helpers import ATTACKER, OWNER, P1


THREADS    = 8
PER_THREAD = 25


def _run(target, n=THREADS):
    threads = [threading.Thread(target=target) for _ in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()


class TestConcurrency:

    def test_concurrent_cautions_are_not_lost(self, ledger):
        ledger.register_participant(OWNER, P1)
        errors = []

        def caution_many():
            try:
                for _ in range(PER_THREAD):
                    ledger.issue_caution(OWNER, P1)
            except Exception as e:
                errors.append(str(e))

        _run(caution_many)

        assert errors == [], f"Concurrent cautions raised exceptions: {errors}"
        assert ledger.get_record(P1) == (THREADS * PER_THREAD, 0)

        # Totals reported by notifications are exactly 1..N, in sequence order
        totals = [n.total for n in ledger.notifications()[1:]]
        assert totals == list(range(1, THREADS * PER_THREAD + 1))

    def test_concurrent_registration_accepts_exactly_one(self, ledger):
        accepted = []
        rejected = []

        def register():
            try:
                accepted.append(ledger.register_participant(OWNER, P1))
            except AlreadyRegistered:
                rejected.append(1)

        _run(register)

        assert len(accepted) == 1
        assert len(rejected) == THREADS - 1
        assert ledger.participants() == [P1]

    def test_interleaved_owner_and_attacker(self, ledger):
        ledger.register_participant(OWNER, P1)
        unauthorized = []

        def owner_calls():
            for _ in range(PER_THREAD):
                ledger.issue_dismissal(OWNER, P1)

        def attacker_calls():
            for _ in range(PER_THREAD):
                try:
                    ledger.issue_dismissal(ATTACKER, P1)
                except Unauthorized:
                    unauthorized.append(1)

        threads = [threading.Thread(target=owner_calls) for _ in range(4)]
        threads += [threading.Thread(target=attacker_calls) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert ledger.get_record(P1) == (0, 4 * PER_THREAD)
        assert len(unauthorized) == 4 * PER_THREAD

    def test_concurrent_journaled_calls_keep_the_chain(self, journal_path, owner_key):
        ledger = Ledger.open(journal_path, owner_key)
        owner  = owner_key.identity
        ledger.register_participant(owner, P1)
        errors = []

        def mixed():
            try:
                for i in range(PER_THREAD):
                    if i % 5 == 0:
                        ledger.issue_dismissal(owner, P1)
                    else:
                        ledger.issue_caution(owner, P1)
            except Exception as e:
                errors.append(str(e))

        _run(mixed)
        assert errors == []

        engine = ReplayEngine(silent=True)
        engine.load(journal_path)
        summary = engine.verify()

        assert summary.violations == [], f"Violations: {summary.violations}"
        assert summary.total_entries == 2 + THREADS * PER_THREAD
        assert summary.records[P1].as_tuple() == ledger.get_record(P1)
        assert ledger.get_record(P1) == (THREADS * 20, THREADS * 5)

        restored = Ledger.open(journal_path, owner_key)
        assert restored.get_record(P1) == ledger.get_record(P1)
