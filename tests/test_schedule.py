import datetime as dt
import pytest
from avrd.schedule import (MINUTES_PER_DAY, TIMER_RESOLUTION, InvalidSchedule, ScalarSettings,
                           ScheduleEngine, WeeklyEvent, weekday_of)

SUN, MON, TUE, WED, THU, FRI, SAT = range(7)

def engine(off=(), on=(), **kw):
    e = ScheduleEngine()
    e.load([WeeklyEvent(*x) for x in off], [WeeklyEvent(*x) for x in on], ScalarSettings(**kw))
    return e

def test_weekday_numbering_starts_sunday():
    assert weekday_of(dt.datetime(2024, 1, 1)) == MON
    assert weekday_of(dt.datetime(2024, 1, 7)) == SUN

def test_weekly_event_range_checked():
    WeeklyEvent(SAT, MINUTES_PER_DAY)
    with pytest.raises(ValueError): WeeklyEvent(7, 0)
    with pytest.raises(ValueError): WeeklyEvent(MON, 1441)

def test_next_same_day_picks_earliest_later_entry():
    e = engine(off=[(MON, 540), (MON, 1260), (MON, 1200)])
    assert tuple(e.next_occurrence('off', 600, MON, None)) == (1200, False)

def test_next_same_minute_is_not_today():
    e = engine(off=[(MON, 600), (TUE, 480)])
    assert e.next_occurrence('off', 600, MON, None).minute == MINUTES_PER_DAY + 480

def test_next_later_day_adds_whole_days():
    e = engine(off=[(MON, 540), (WED, 600)])
    assert tuple(e.next_occurrence('off', 700, MON, None)) == (2 * MINUTES_PER_DAY + 600, False)

def test_tomorrow_is_kept_over_fallback():
    e = engine(off=[(TUE, 480)])
    assert tuple(e.next_occurrence('off', 700, MON, 1320)) == (MINUTES_PER_DAY + 480, False)

def test_far_entry_replaced_by_fallback():
    e = engine(off=[(MON, 540), (WED, 600)])
    assert tuple(e.next_occurrence('off', 700, MON, 1320)) == (1320, True)

def test_wrap_to_next_week():
    e = engine(off=[(MON, 540)], on=[(MON, 1080)])
    assert tuple(e.next_occurrence('off', 600, MON, None)) == (6 * MINUTES_PER_DAY + 540, False)
    assert tuple(e.next_occurrence('off', 600, MON, 1380)) == (1380, True)

def test_empty_sequence_uses_fallback():
    e = engine()
    assert tuple(e.next_occurrence('on', 100, MON, 420)) == (420, True)
    assert e.next_occurrence('on', 100, MON, None) is None

def test_midnight_default_counts_as_set():
    assert tuple(engine().next_occurrence('off', 100, MON, 0)) == (0, True)
    e = engine(off=[(MON, 540), (WED, 600)])
    assert tuple(e.next_occurrence('off', 700, MON, 0)) == (0, True)
    r = engine(timer_enabled=True, off_default=0, on_default=420).compute_schedule(dt.datetime(2024, 1, 1, 20, 0))
    assert r.shutdown_s == 4 * 3600

def test_occurrence_never_before_now_except_saturday_wrap():
    events = [(SUN, 600), (WED, 1320), (FRI, 60)]
    e = engine(off=events)
    for day in range(7):
        for minute in range(0, MINUTES_PER_DAY, 37):
            occ = e.next_occurrence('off', minute, day, None)
            # Saturday -> Sunday wraps with a zero day offset
            assert occ.minute > minute or (day == SAT and occ.minute == 600)

def test_countdown_never_negative():
    e = engine(off=[(SUN, 600), (WED, 1320), (FRI, 60)], on=[(MON, 420)], timer_enabled=True)
    start = dt.datetime(2024, 1, 7)  # Sunday
    for hour in range(0, 7 * 24, 5):
        now = start + dt.timedelta(hours=hour, seconds=59)
        assert e.compute_schedule(now).shutdown_s >= 0

def test_daily_defaults():
    e = engine(timer_enabled=True, off_default=1380, on_default=420)
    now = dt.datetime(2024, 1, 1, 20, 0, 30)
    r = e.compute_schedule(now)
    assert r.shutdown_s == 180 * 60 - 30
    assert r.wait_s == 660 * 60
    assert r.register == 660 * 100 // 112
    assert not r.clamped
    assert r.on_at == dt.datetime(2024, 1, 2, 7, 0, 30)

def test_off_earlier_than_now_uses_half_day_correction():
    e = engine(timer_enabled=True, off_default=540, on_default=1020)
    r = e.compute_schedule(dt.datetime(2024, 1, 1, 10, 0, 0))
    assert r.shutdown_s == 23 * 3600
    assert r.off_at == dt.datetime(2024, 1, 2, 9, 0)

def test_register_clamped_and_reported():
    e = engine(off=[(MON, 1320)], on=[(FRI, 480)], timer_enabled=True)
    r = e.compute_schedule(dt.datetime(2024, 1, 1, 8, 0, 0))
    assert r.shutdown_s == 840 * 60
    assert r.register == TIMER_RESOLUTION
    assert r.clamped
    assert r.wait_s == 5760 * 60 - ((5142 - TIMER_RESOLUTION) * 672) // 10

def test_register_capped_without_error_when_reachable_from_power_off():
    e = engine(off=[(WED, 1320)], on=[(FRI, 480)], timer_enabled=True)
    r = e.compute_schedule(dt.datetime(2024, 1, 1, 8, 0, 0))
    assert r.register == TIMER_RESOLUTION
    assert not r.clamped

def test_missing_times_rejected():
    with pytest.raises(InvalidSchedule):
        engine(timer_enabled=True, on_default=420).compute_schedule(dt.datetime(2024, 1, 1))
    with pytest.raises(InvalidSchedule):
        engine(timer_enabled=True, off_default=420).compute_schedule(dt.datetime(2024, 1, 1))

def test_load_is_all_or_nothing():
    e = engine(off=[(MON, 540)], timer_enabled=True)
    with pytest.raises(TypeError):
        e.load([WeeklyEvent(TUE, 60)], [(MON, 100)], ScalarSettings())
    assert e.off_events == (WeeklyEvent(MON, 540),)
    assert e.enabled

def test_disable_keeps_events():
    e = engine(off=[(MON, 540)], timer_enabled=True)
    e.disable()
    assert not e.enabled and len(e.off_events) == 1
    e.clear()
    assert e.off_events == () and e.settings == ScalarSettings()
