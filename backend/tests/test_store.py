import threading

from letterduel.store.memory import ABORT, SERVER_TIMESTAMP, MemoryStore, join_path, split_path


def test_paths():
    assert split_path('/rooms/ABC/players/') == ['rooms', 'ABC', 'players']
    assert join_path('rooms', '/ABC/', 'players') == 'rooms/ABC/players'


def test_set_get_and_update(store):
    store.set('rooms/A', {'status': 'waiting', 'players': {'p1': {'name': 'x'}}})
    store.update('rooms/A', {'status': 'playing', 'players/p1/score': 10})

    assert store.get('rooms/A/status') == 'playing'
    assert store.get('rooms/A/players/p1') == {'name': 'x', 'score': 10}


def test_get_returns_a_copy(store):
    store.set('a', {'b': 1})
    value = store.get('a')
    value['b'] = 2
    assert store.get('a/b') == 1


def test_remove_prunes_empty_parents(store):
    store.set('rooms/A/players/p1', {'name': 'x'})
    store.remove('rooms/A/players/p1')
    assert store.get('rooms') is None


def test_none_values_are_dropped(store):
    store.set('a', {'b': None, 'c': 1})
    assert store.get('a') == {'c': 1}


def test_server_timestamp_resolves_at_commit(clock):
    store = MemoryStore(clock=clock)
    store.set('a', {'at': SERVER_TIMESTAMP})
    assert store.get('a/at') == clock.now
    assert store.server_time_offset_ms(clock.now - 250) == 250


def test_transaction_commit_and_abort(store):
    store.set('counter', 1)

    result = store.transaction('counter', lambda v: (v or 0) + 1)
    assert result.committed
    assert result.value == 2

    result = store.transaction('counter', lambda v: ABORT)
    assert not result.committed
    assert store.get('counter') == 2


def test_transaction_retries_when_value_changes(store):
    store.set('counter', 1)
    calls = []

    def bump(value):
        calls.append(value)
        if len(calls) == 1:
            # A concurrent writer sneaks in before our commit.
            store.set('counter', 5)
        return value + 1

    result = store.transaction('counter', bump)
    assert result.committed
    assert calls == [1, 5]
    assert store.get('counter') == 6


def test_transaction_returning_none_deletes(store):
    store.set('rooms/A', {'x': 1})
    assert store.transaction('rooms/A', lambda v: None).committed
    assert store.get('rooms/A') is None


def test_subscribe_delivers_initial_and_changes_in_order(store):
    seen = []
    unsubscribe = store.subscribe('rooms/A', seen.append)

    store.set('rooms/A', {'n': 1})
    store.set('rooms/B', {'n': 9})
    store.update('rooms/A', {'n': 2})
    unsubscribe()
    store.update('rooms/A', {'n': 3})

    assert seen == [None, {'n': 1}, {'n': 2}]


def test_writes_from_callbacks_are_delivered_after_current_snapshot(store):
    seen = []

    def on_value(value):
        seen.append(value)
        if value == {'n': 1}:
            store.update('a', {'n': 2})

    store.subscribe('a', on_value)
    store.set('a', {'n': 1})
    assert seen == [None, {'n': 1}, {'n': 2}]


def test_failing_subscriber_does_not_block_others(store):
    seen = []

    def broken(value):
        raise RuntimeError('boom')

    store.subscribe('a', broken)
    store.subscribe('a', seen.append)
    store.set('a', 1)
    assert seen == [None, 1]


def test_on_disconnect_runs_registered_ops(store):
    store.set('rooms/A/players', {'p1': {'name': 'x'}, 'p2': {'name': 'y'}})
    store.set('presence/p1', True)

    handle = store.on_disconnect('sid-1')
    handle.remove('presence/p1')
    handle.transaction('rooms/A/players', lambda v: {k: p for k, p in v.items() if k != 'p1'})

    store.disconnect('sid-1')
    assert store.get('presence/p1') is None
    assert store.get('rooms/A/players') == {'p2': {'name': 'y'}}


def test_cancelled_on_disconnect_does_nothing(store):
    store.set('presence/p1', True)
    store.on_disconnect('sid-1').remove('presence/p1').cancel()
    store.disconnect('sid-1')
    assert store.get('presence/p1') is True


class _ReleaseHookLock:
    """Lock that runs ``on_release`` once, right after the next release."""

    def __init__(self):
        self._lock = threading.Lock()
        self.on_release = None

    def __enter__(self):
        self._lock.acquire()
        return self

    def __exit__(self, *exc):
        self._lock.release()
        hook, self.on_release = self.on_release, None
        if hook is not None:
            hook()
        return False


def test_write_racing_the_end_of_a_drain_is_delivered(store):
    lock = _ReleaseHookLock()
    store._queue_lock = lock
    seen = []

    def concurrent_write():
        writer = threading.Thread(target=store.set, args=('a', 2))
        writer.start()
        writer.join(timeout=5)

    def on_value(value):
        seen.append(value)
        if value == 1:
            # Fires after the drainer's next lock release: its empty-queue check.
            lock.on_release = concurrent_write

    store.subscribe('a', on_value)
    store.set('a', 1)
    assert seen == [None, 1, 2]
