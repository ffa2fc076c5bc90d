from datetime import timedelta

import pytest

from quarterclock.services.clock import Clock, ClockConfig, ClockStatus, EventSource, EventType
from quarterclock.services.clock.state import ClockState, remaining_seconds, round10


def make_clock(fake_time, length=60, quarters=4):
    return Clock(ClockConfig(event_id='evt-1', quarter_length_seconds=length, total_quarters=quarters), now_fn=fake_time)


def test_initial_state(fake_time):
    clock = make_clock(fake_time, length=900)
    state = clock.get_state()
    assert state.status == ClockStatus.SCHEDULED
    assert state.current_quarter == 1
    assert not state.is_running
    assert state.started_at is None
    assert clock.get_current_time() == 900
    assert not clock.is_expired()
    assert not clock.is_game_finished()


def test_start_pause_accumulates_running_time(fake_time):
    clock = make_clock(fake_time, length=60)
    clock.start()
    fake_time.advance(10)
    clock.pause()
    assert clock.get_current_time() == 50
    clock.start()
    fake_time.advance(5)
    clock.pause()
    assert clock.get_current_time() == 45
    assert clock.get_state().accumulated_run_time_seconds == 15


def test_running_time_is_rounded_to_tenths(fake_time):
    clock = make_clock(fake_time, length=60)
    clock.start()
    fake_time.advance(1.234)
    assert clock.get_current_time() == 58.8
    fake_time.advance(0.016)
    # 58.75 rounds half up
    assert clock.get_current_time() == 58.8


def test_round10_rounds_half_up():
    assert round10(0.05) == 0.1
    assert round10(0.25) == 0.3
    assert round10(12.34) == 12.3


def test_expiry_clamps_to_zero(fake_time):
    clock = make_clock(fake_time, length=5)
    clock.start()
    fake_time.advance(6)
    assert clock.is_expired()
    assert clock.get_current_time() == 0
    # the pure clock does not stop itself; settling does
    assert clock.get_state().is_running
    assert clock.settle_expiry()
    state = clock.get_state()
    assert not state.is_running
    assert state.status == ClockStatus.SCHEDULED
    assert state.accumulated_run_time_seconds == 5
    assert clock.get_current_time() == 0


def test_settle_expiry_ignores_clock_with_time_left(fake_time):
    clock = make_clock(fake_time, length=60)
    clock.start()
    fake_time.advance(10)
    assert not clock.settle_expiry()
    assert clock.get_state().is_running


def test_cannot_start_expired_clock(fake_time):
    clock = make_clock(fake_time, length=5)
    clock.start()
    fake_time.advance(6)
    clock.pause()
    clock.start()
    assert not clock.get_state().is_running


def test_start_is_idempotent(fake_time):
    clock = make_clock(fake_time)
    events = []
    clock.subscribe(events.append)
    clock.start()
    first = clock.get_state()
    fake_time.advance(3)
    clock.start()
    assert clock.get_state() == first
    assert [e.type for e in events] == [EventType.START]


def test_pause_is_idempotent(fake_time):
    clock = make_clock(fake_time)
    clock.start()
    fake_time.advance(4)
    clock.pause()
    first = clock.get_state()
    fake_time.advance(4)
    clock.pause()
    assert clock.get_state() == first


def test_reset_is_idempotent(fake_time):
    clock = make_clock(fake_time)
    clock.start()
    fake_time.advance(20)
    clock.reset()
    first = clock.get_state()
    clock.reset()
    assert clock.get_state() == first
    assert first.accumulated_run_time_seconds == 0
    assert clock.get_current_time() == 60


def test_paused_clock_does_not_move(fake_time):
    clock = make_clock(fake_time)
    clock.start()
    fake_time.advance(12)
    clock.pause()
    frozen = clock.get_current_time()
    for _ in range(5):
        fake_time.advance(300)
        assert clock.get_current_time() == frozen


def test_four_next_quarters_finish_the_game(fake_time):
    clock = make_clock(fake_time, quarters=4)
    for _ in range(4):
        clock.next_quarter()
    state = clock.get_state()
    assert state.status == ClockStatus.FINISHED
    assert state.current_quarter == 4
    assert clock.is_game_finished()


@pytest.mark.parametrize('calls', [4, 5, 9])
def test_quarter_never_exceeds_total(fake_time, calls):
    clock = make_clock(fake_time, quarters=4)
    for _ in range(calls):
        clock.next_quarter()
    assert clock.get_state().current_quarter == 4
    assert clock.get_state().status == ClockStatus.FINISHED


def test_next_quarter_clears_running_time(fake_time):
    clock = make_clock(fake_time)
    clock.start()
    fake_time.advance(30)
    clock.next_quarter()
    state = clock.get_state()
    assert state.current_quarter == 2
    assert not state.is_running
    assert state.started_at is None
    assert state.accumulated_run_time_seconds == 0
    assert clock.get_current_time() == 60


def test_finished_clock_ignores_commands(fake_time):
    clock = make_clock(fake_time, quarters=1)
    clock.next_quarter()
    assert clock.is_game_finished()
    events = []
    clock.subscribe(events.append)
    clock.start()
    clock.reset()
    clock.next_quarter()
    clock.pause()
    assert events == []
    assert clock.get_state().status == ClockStatus.FINISHED


def test_sync_only_emits_on_change(fake_time):
    clock = make_clock(fake_time)
    events = []
    clock.subscribe(events.append)
    assert not clock.sync({'current_quarter': 1, 'is_running': False})
    assert events == []
    assert clock.sync({'current_quarter': 3, 'status': 'scheduled', 'unknown': 1})
    assert len(events) == 1
    assert events[0].type == EventType.SYNC
    assert events[0].source == EventSource.REGISTRY
    assert clock.get_state().current_quarter == 3


def test_sync_accepts_iso_started_at(fake_time):
    clock = make_clock(fake_time, length=900)
    started = fake_time() - timedelta(seconds=300)
    clock.sync({'is_running': True, 'started_at': started.isoformat(), 'status': 'live'})
    assert clock.get_current_time() == 600


def test_listeners_receive_snapshots(fake_time):
    clock = make_clock(fake_time)
    events = []
    clock.subscribe(events.append)
    clock.start()
    fake_time.advance(2)
    clock.pause()
    assert [e.type for e in events] == [EventType.START, EventType.PAUSE]
    assert events[0].resulting_state.is_running
    assert not events[1].resulting_state.is_running
    assert events[1].event_id == 'evt-1'
    # snapshots are copies, not live views
    assert events[0].resulting_state.status == ClockStatus.LIVE


def test_failing_listener_does_not_block_others(fake_time):
    clock = make_clock(fake_time)
    seen = []

    def broken(event):
        raise RuntimeError('boom')

    clock.subscribe(broken)
    clock.subscribe(seen.append)
    clock.start()
    assert len(seen) == 1
    assert clock.get_state().is_running


def test_unsubscribe_stops_notifications(fake_time):
    clock = make_clock(fake_time)
    seen = []
    unsubscribe = clock.subscribe(seen.append)
    clock.start()
    unsubscribe()
    unsubscribe()
    clock.pause()
    assert len(seen) == 1


def test_remaining_seconds_matches_clock(fake_time):
    state = ClockState(event_id='x', quarter_length_seconds=100, is_running=True,
                       started_at=fake_time(), accumulated_run_time_seconds=20,
                       status=ClockStatus.LIVE)
    fake_time.advance(30)
    assert remaining_seconds(state, fake_time()) == 50


def test_sync_running_without_start_time_anchors_now(fake_time):
    clock = make_clock(fake_time, length=900)
    clock.sync({'is_running': True, 'accumulated_run_time_seconds': 900})
    state = clock.get_state()
    assert state.started_at == fake_time()
    assert state.status == ClockStatus.LIVE
    fake_time.advance(1)
    assert clock.settle_expiry()
    assert not clock.get_state().is_running
    assert clock.get_state().accumulated_run_time_seconds == 900


def test_sync_rejects_malformed_quarter(fake_time):
    clock = make_clock(fake_time)
    events = []
    clock.subscribe(events.append)
    for bad in ('two', None, 0, True):
        with pytest.raises(ValueError):
            clock.sync({'current_quarter': bad})
    assert events == []
    assert clock.sync({'current_quarter': '2'})
    clock.next_quarter()
    assert clock.get_state().current_quarter == 3


def test_sync_rejects_malformed_timing(fake_time):
    clock = make_clock(fake_time)
    with pytest.raises(ValueError):
        clock.sync({'accumulated_run_time_seconds': -5})
    with pytest.raises(ValueError):
        clock.sync({'started_at': 12345, 'is_running': True})
    with pytest.raises(ValueError):
        clock.sync({'status': 'paused'})
    assert clock.get_state() == make_clock(fake_time).get_state()


def test_sync_never_changes_identity(fake_time):
    clock = make_clock(fake_time)
    events = []
    clock.subscribe(events.append)
    assert not clock.sync({'event_id': 'someone-else'})
    assert clock.sync({'event_id': 'someone-else', 'current_quarter': 2})
    assert clock.event_id == 'evt-1'
    assert events[0].resulting_state.event_id == 'evt-1'


def test_sync_keeps_stopped_state_consistent(fake_time):
    clock = make_clock(fake_time, length=60)
    clock.sync({'accumulated_run_time_seconds': 500, 'started_at': fake_time().isoformat(), 'status': 'live'})
    state = clock.get_state()
    assert state.accumulated_run_time_seconds == 60
    assert state.started_at is None
    assert state.status == ClockStatus.SCHEDULED
