import pytest

from conftest import FakeClock, user_id
from linedesk.services.admission_service import AdmissionController, SpamLevel
from linedesk.services.conversation_store import ConversationStore
from linedesk.services.handoff_service import ManualHandoffGate


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return ConversationStore(retention_seconds=86400, max_records=100, clock=clock)


@pytest.fixture
def gate(clock):
    return ManualHandoffGate(clock=clock)


@pytest.fixture
def admission(store, gate, clock):
    controller = AdmissionController(store, gate, max_concurrency=2, clock=clock)
    controller.turns = []
    controller.on_turn = controller.turns.append
    return controller


def queue_user(admission, store, n):
    record = store.get_or_create(user_id(n))
    admission.enqueue(user_id(n), record)
    return record


class TestSlots:
    def test_never_exceeds_cap(self, admission):
        assert admission.try_acquire() is True
        assert admission.try_acquire() is True
        assert admission.try_acquire() is False
        assert admission.active_count == 2
        assert admission.peak_active == 2

    def test_release_admits_exactly_one(self, admission, store):
        admission.try_acquire()
        admission.try_acquire()
        for n in (1, 2, 3):
            queue_user(admission, store, n)

        picked = admission.release()

        assert picked == [user_id(1)]
        assert admission.turns == [user_id(1)]
        assert admission.queued_users() == [user_id(2), user_id(3)]

    def test_release_with_empty_queue(self, admission):
        admission.try_acquire()
        assert admission.release() == []
        assert admission.active_count == 0

    def test_release_without_acquire_does_not_go_negative(self, admission):
        admission.release()
        assert admission.active_count == 0


class TestQueue:
    def test_enqueue_is_idempotent(self, admission, store):
        record = store.get_or_create(user_id(1))
        assert admission.enqueue(user_id(1), record) is True
        assert admission.enqueue(user_id(1), record) is False
        assert admission.queue_length == 1
        assert record.queued is True

    def test_dequeue_clears_record(self, admission, store):
        record = queue_user(admission, store, 1)
        record.spam_long_count = 5
        admission.dequeue(user_id(1), record)
        assert admission.queue_length == 0
        assert record.queued is False
        assert record.spam_long_count == 0

    def test_skips_users_in_manual_handoff(self, admission, store, gate):
        admission.try_acquire()
        admission.try_acquire()
        handed_off = queue_user(admission, store, 1)
        gate.activate(handed_off)
        queue_user(admission, store, 2)

        assert admission.release() == [user_id(2)]
        assert admission.queue_length == 0
        assert handed_off.queued is False

    def test_skips_users_no_longer_queued(self, admission, store):
        admission.try_acquire()
        admission.try_acquire()
        queue_user(admission, store, 1).queued = False
        queue_user(admission, store, 2)

        assert admission.release() == [user_id(2)]

    def test_users_in_cooldown_stay_queued(self, admission, store, clock):
        admission.try_acquire()
        admission.try_acquire()
        queue_user(admission, store, 1).cooldown_until = clock() + 60
        queue_user(admission, store, 2)

        assert admission.release() == [user_id(2)]
        assert admission.queued_users() == [user_id(1)]

    def test_claim_turn_with_free_slot(self, admission, store):
        admission.try_acquire()
        first = queue_user(admission, store, 1)
        second = queue_user(admission, store, 2)

        assert admission.claim_turn(user_id(2), second) is False
        assert admission.claim_turn(user_id(1), first) is True
        assert first.queued is False
        assert admission.queued_users() == [user_id(2)]

    def test_claim_turn_without_free_slot(self, admission, store):
        admission.try_acquire()
        admission.try_acquire()
        record = queue_user(admission, store, 1)
        assert admission.claim_turn(user_id(1), record) is False
        assert record.queued is True

    def test_admit_waiting_after_restore(self, admission, store, clock):
        record = store.get_or_create(user_id(1))
        record.queued = True
        record.queued_at = clock()
        admission.restore()

        assert admission.admit_waiting() == [user_id(1)]
        assert admission.turns == [user_id(1)]

    def test_restore_orders_by_enqueue_time(self, admission, store, clock):
        for n, offset in ((1, 30), (2, 10), (3, 20)):
            record = store.get_or_create(user_id(n))
            record.queued = True
            record.queued_at = clock() + offset
        store.get_or_create(user_id(4))

        assert admission.restore() == 3
        assert admission.queued_users() == [user_id(2), user_id(3), user_id(1)]


class TestAntiAbuse:
    def test_unqueued_users_are_not_counted(self, admission, store):
        record = store.get_or_create(user_id(1))
        assert admission.register_message(user_id(1), record) == SpamLevel.NONE
        assert record.spam_short_count == 0

    def test_short_window_soft_limit(self, admission, store):
        record = queue_user(admission, store, 1)
        levels = [admission.register_message(user_id(1), record) for _ in range(7)]
        assert levels[:6] == [SpamLevel.NONE] * 6
        assert levels[6] == SpamLevel.SOFT

    def test_short_window_rolls_over(self, admission, store, clock):
        record = queue_user(admission, store, 1)
        for _ in range(6):
            admission.register_message(user_id(1), record)
        clock.advance(31)
        assert admission.register_message(user_id(1), record) == SpamLevel.NONE

    def test_long_window_soft_limit(self, admission, store, clock):
        record = queue_user(admission, store, 1)
        levels = []
        for _ in range(16):
            levels.append(admission.register_message(user_id(1), record))
            clock.advance(6)
        assert SpamLevel.SOFT not in levels[:15]
        assert levels[15] == SpamLevel.SOFT

    def test_hard_limit_sets_cooldown_and_dequeues(self, admission, store, clock):
        record = queue_user(admission, store, 1)
        levels = [admission.register_message(user_id(1), record) for _ in range(40)]

        assert levels[-1] == SpamLevel.HARD
        assert SpamLevel.HARD not in levels[:-1]
        assert record.cooldown_until == clock() + 300
        assert record.queued is False
        assert admission.queue_length == 0
        assert admission.in_cooldown(record) is True

        clock.advance(301)
        assert admission.in_cooldown(record) is False
        assert record.cooldown_until is None


class TestNotices:
    def test_notice_rate_limited(self, admission, store, clock):
        record = store.get_or_create(user_id(1))
        assert admission.claim_notice(record) is True
        clock.advance(30)
        assert admission.claim_notice(record) is False
        clock.advance(31)
        assert admission.claim_notice(record) is True

    def test_forced_notice(self, admission, store):
        record = store.get_or_create(user_id(1))
        admission.claim_notice(record)
        assert admission.claim_notice(record, force=True) is True
