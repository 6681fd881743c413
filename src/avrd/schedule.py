from __future__ import annotations
import datetime as dt
import logging
from dataclasses import dataclass, field, replace
from typing import Iterable, Literal, NamedTuple, Optional, Tuple

Kind = Literal['off', 'on']

DAYS = ['SUN', 'MON', 'TUE', 'WED', 'THU', 'FRI', 'SAT']

MINUTES_PER_DAY = 24 * 60
HALF_DAY = 12 * 60
TIMER_RESOLUTION = 4095   # 12-bit wake register
# 112 device ticks per 100 real minutes
OSC_NUM, OSC_DEN = 100, 112


class ScheduleError(Exception):
    pass


class InvalidSchedule(ScheduleError):
    pass


@dataclass(frozen=True, order=True)
class WeeklyEvent:
    weekday: int         # 0=Sunday .. 6=Saturday
    minute: int          # minute of day, 1440 = end of day

    def __post_init__(self):
        if not 0 <= self.weekday <= 6:
            raise ValueError(f"weekday out of range: {self.weekday}")
        if not 0 <= self.minute <= MINUTES_PER_DAY:
            raise ValueError(f"minute out of range: {self.minute}")


@dataclass(frozen=True)
class ScalarSettings:
    timer_enabled: bool = False
    off_default: Optional[int] = None
    on_default: Optional[int] = None
    disk_check_pct: int = 90
    refresh_s: int = 40
    hold_s: int = 3
    fan_seize_s: int = 30
    pester_on_disk_full: bool = False
    partitions: Tuple[str, ...] = field(default_factory=tuple)


class Occurrence(NamedTuple):
    minute: int              # minutes from the start of the current day
    used_fallback: bool


@dataclass(frozen=True)
class ScheduleResult:
    shutdown_s: int
    register: int
    wait_s: int
    clamped: bool
    off_at: dt.datetime
    on_at: dt.datetime


def weekday_of(when: dt.datetime) -> int:
    return (when.weekday() + 1) % 7


class ScheduleEngine:
    """
    Weekly power-off/power-on table for the device wake timer.

    Occurrences are measured in minutes from midnight of the queried day, so a
    result above 1440 lands on a later day. Wrapping past Saturday counts
    (6 - today + weekday) whole days.
    """

    def __init__(self):
        self._log = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self._off: Tuple[WeeklyEvent, ...] = ()
        self._on: Tuple[WeeklyEvent, ...] = ()
        self.settings = ScalarSettings()

    @property
    def enabled(self) -> bool:
        return self.settings.timer_enabled

    @property
    def off_events(self) -> Tuple[WeeklyEvent, ...]:
        return self._off

    @property
    def on_events(self) -> Tuple[WeeklyEvent, ...]:
        return self._on

    def load(self, off_events: Iterable[WeeklyEvent], on_events: Iterable[WeeklyEvent],
             settings: ScalarSettings) -> None:
        off = tuple(off_events); on = tuple(on_events)
        for ev in off + on:
            if not isinstance(ev, WeeklyEvent):
                raise TypeError(f"not a WeeklyEvent: {ev!r}")
        self._off, self._on, self.settings = off, on, settings
        self._log.info("Loaded %d off / %d on events timer=%s off_default=%s on_default=%s",
                       len(off), len(on), settings.timer_enabled, settings.off_default, settings.on_default)

    def disable(self) -> None:
        self.settings = replace(self.settings, timer_enabled=False)

    def clear(self) -> None:
        self._off, self._on, self.settings = (), (), ScalarSettings()

    def next_occurrence(self, kind: Kind, now_minute: int, now_weekday: int,
                        fallback: Optional[int]) -> Optional[Occurrence]:
        events = self._off if kind == 'off' else self._on
        if not events:
            return None if fallback is None else Occurrence(fallback, True)

        today = [e for e in events if e.weekday == now_weekday and e.minute > now_minute]
        if today:
            return Occurrence(min(e.minute for e in today), False)

        later = [e for e in events if e.weekday > now_weekday]
        if later:
            first = min(later, key=lambda e: e.weekday)
            day_offset = (first.weekday - now_weekday) * MINUTES_PER_DAY
        else:
            first = events[0]
            day_offset = ((6 - now_weekday) + first.weekday) * MINUTES_PER_DAY

        # prefer the plain daily default over anything more than a day out
        if day_offset > MINUTES_PER_DAY and fallback is not None:
            return Occurrence(fallback, True)
        return Occurrence(day_offset + first.minute, False)

    def compute_schedule(self, now: dt.datetime) -> ScheduleResult:
        s = self.settings
        now_minute = now.hour * 60 + now.minute
        weekday = weekday_of(now)

        off = self.next_occurrence('off', now_minute, weekday, s.off_default)
        if off is None:
            raise InvalidSchedule("no power-off time configured")
        # switch-off is a later day: search power-on from now instead
        anchor = now_minute if off.minute > MINUTES_PER_DAY else off.minute
        on = self.next_occurrence('on', anchor, weekday, s.on_default)
        if on is None:
            raise InvalidSchedule("no power-on time configured")

        if off.minute < now_minute:
            shutdown_s = (HALF_DAY + (off.minute - (now_minute - HALF_DAY))) * 60
        else:
            shutdown_s = (off.minute - now_minute) * 60
        shutdown_s = max(0, shutdown_s - now.second)

        on_minute = on.minute
        if on_minute < now_minute:
            span = HALF_DAY + (on_minute - (now_minute - HALF_DAY))
        else:
            if on_minute < off.minute:
                on_minute += MINUTES_PER_DAY
            span = on_minute - now_minute
        wait_s = span * 60
        register = (span * OSC_NUM) // OSC_DEN

        clamped = False
        if register > TIMER_RESOLUTION:
            # 67.2s of real time per register step
            wait_s -= ((register - TIMER_RESOLUTION) * 672) // 10
            # only an error when the wake is out of reach even counted from power-off
            clamped = register - shutdown_s // 60 > TIMER_RESOLUTION
            if clamped:
                self._log.warning("Wake register %d exceeds timer resolution; clamped to %d",
                                  register, TIMER_RESOLUTION)
            register = TIMER_RESOLUTION

        return ScheduleResult(
            shutdown_s=shutdown_s,
            register=register,
            wait_s=wait_s,
            clamped=clamped,
            off_at=now + dt.timedelta(seconds=shutdown_s),
            on_at=now + dt.timedelta(seconds=wait_s),
        )
