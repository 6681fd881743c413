import os
import pytest
from avrd.provider import ConfigProvider, ConfigUnavailable, expand_days, parse_time
from avrd.schedule import WeeklyEvent

SAMPLE = """
timer: on
shutdown: "23:30"
poweron: "07:00"
refresh: 500
hold: 1
disk_nag: on
fan_stop: off
root: sda1
work: sda2
schedule:
  - days: MON-FRI
    power_off: "23:00"
    power_on: "07:30"
  - days: SAT
    power_off:
"""

def test_parse_time():
    assert parse_time("07:30") == 450
    assert parse_time("24:00") == 1440
    assert parse_time(1410) == 1410
    for bad in ("24:30", "12:60", "7", "noon", True):
        with pytest.raises(ValueError): parse_time(bad)

def test_expand_days():
    assert expand_days("MON-FRI") == [1, 2, 3, 4, 5]
    assert expand_days("FRI-MON") == [5, 6, 0, 1]
    assert expand_days(["SAT", "sun"]) == [6, 0]
    assert expand_days("THR") == [4]
    with pytest.raises(ValueError): expand_days("XYZ")

def test_parse_sample():
    p = ConfigProvider("unused").parse(SAMPLE)
    assert p.valid
    s = p.settings
    assert s.timer_enabled and s.off_default == 1410 and s.on_default == 420
    assert s.refresh_s == 300 and s.hold_s == 2
    assert s.pester_on_disk_full and s.fan_seize_s == 0
    assert s.partitions == ("sda1", "sda2")
    assert p.off_events == tuple(WeeklyEvent(d, 1380) for d in range(1, 6)) + (WeeklyEvent(6, 1440),)
    assert p.on_events == tuple(WeeklyEvent(d, 450) for d in range(1, 6))

def test_unquoted_times_are_minutes():
    p = ConfigProvider("unused").parse("timer: on\nshutdown: 23:30\n")
    assert p.settings.off_default == 1410

def test_bad_time_disables_timer_but_keeps_scalars():
    p = ConfigProvider("unused").parse("timer: on\nrefresh: 60\nschedule:\n  - days: MON\n    power_off: '25:00'\n")
    assert not p.valid
    assert not p.settings.timer_enabled
    assert p.settings.refresh_s == 60
    assert p.off_events == ()

def test_bad_yaml_is_invalid():
    p = ConfigProvider("unused").parse("timer: [on\n")
    assert not p.valid and not p.settings.timer_enabled

def test_poll_reports_changes_only(tmp_path):
    path = tmp_path / "avr_evtd.yaml"
    path.write_text("timer: off\n")
    prov = ConfigProvider(str(path))
    first = prov.poll()
    assert first is not None and not first.settings.timer_enabled
    assert prov.poll() is None
    path.write_text(SAMPLE)
    st = os.stat(path)
    os.utime(path, (st.st_atime, st.st_mtime + 10))
    assert prov.poll().settings.timer_enabled

def test_missing_file_unavailable(tmp_path):
    prov = ConfigProvider(str(tmp_path / "missing.yaml"))
    with pytest.raises(ConfigUnavailable): prov.poll()
