from __future__ import annotations
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple, Union

import yaml
from pydantic import ValidationError

from avrd.config import TimerFile, TimeValue
from avrd.schedule import DAYS, MINUTES_PER_DAY, ScalarSettings, WeeklyEvent

DAY_ALIASES = {'THR': 'THU'}

_HHMM = re.compile(r'\s*(\d{1,2}):(\d{1,2})\s*')


class ConfigUnavailable(Exception):
    pass


@dataclass(frozen=True)
class TimerPayload:
    off_events: Tuple[WeeklyEvent, ...] = ()
    on_events: Tuple[WeeklyEvent, ...] = ()
    settings: ScalarSettings = field(default_factory=ScalarSettings)
    valid: bool = True
    error: Optional[str] = None


def parse_time(value: TimeValue) -> int:
    """'HH:MM' (hour 0..24, minute 0..59) or a minute count -> minute of day, at most 1440."""
    if isinstance(value, bool):
        raise ValueError(f"bad time: {value!r}")
    if isinstance(value, int):
        minutes = value
    else:
        m = _HHMM.fullmatch(value)
        if not m:
            raise ValueError(f"bad time: {value!r}")
        hour, minute = int(m.group(1)), int(m.group(2))
        if not (0 <= hour <= 24 and 0 <= minute <= 59):
            raise ValueError(f"bad time: {value!r}")
        minutes = hour * 60 + minute
    if not 0 <= minutes <= MINUTES_PER_DAY:
        raise ValueError(f"time out of range: {value!r}")
    return minutes


def _day_index(name: str) -> int:
    key = name.strip().upper()[:3]
    key = DAY_ALIASES.get(key, key)
    if key not in DAYS:
        raise ValueError(f"unknown day: {name!r}")
    return DAYS.index(key)


def expand_days(days: Union[str, List[str]]) -> List[int]:
    """'MON', 'MON-FRI', 'FRI-MON' (wraps) or a list of those -> weekday numbers."""
    parts = days if isinstance(days, list) else [p for p in re.split(r"[,\s]+", days) if p]
    out: List[int] = []
    for part in parts:
        if '-' in part:
            first, last = (_day_index(x) for x in part.split('-', 1))
            day = first
            while True:
                if day not in out: out.append(day)
                if day == last: break
                day = (day + 1) % 7
        else:
            day = _day_index(part)
            if day not in out: out.append(day)
    return out


def build_payload(doc: TimerFile) -> TimerPayload:
    partitions = tuple(p for p in (doc.root, doc.work) if p)
    base = dict(disk_check_pct=doc.disk_check, refresh_s=doc.refresh, hold_s=doc.hold,
                fan_seize_s=doc.fan_stop, pester_on_disk_full=doc.disk_nag, partitions=partitions)
    try:
        off_default = parse_time(doc.shutdown) if doc.shutdown is not None else None
        on_default = parse_time(doc.poweron) if doc.poweron is not None else None
        off: List[WeeklyEvent] = []; on: List[WeeklyEvent] = []
        for macro in doc.schedule:
            days = expand_days(macro.days)
            if 'power_off' in macro.model_fields_set:
                minute = MINUTES_PER_DAY if macro.power_off is None else parse_time(macro.power_off)
                off.extend(WeeklyEvent(d, minute) for d in days)
            if 'power_on' in macro.model_fields_set:
                minute = 0 if macro.power_on is None else parse_time(macro.power_on)
                on.extend(WeeklyEvent(d, minute) for d in days)
    except ValueError as e:
        return TimerPayload(settings=ScalarSettings(timer_enabled=False, **base), valid=False, error=str(e))
    settings = ScalarSettings(timer_enabled=doc.timer, off_default=off_default, on_default=on_default, **base)
    return TimerPayload(tuple(sorted(off)), tuple(sorted(on)), settings)


class ConfigProvider:
    """Watches the timer file mtime and parses it into a TimerPayload on change."""

    def __init__(self, path: str):
        self.path = Path(path)
        self._mtime: Optional[float] = None
        self._log = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def poll(self) -> Optional[TimerPayload]:
        """New payload if the file changed since the last poll, else None.
        Raises ConfigUnavailable when the file cannot be stat'ed or read."""
        try:
            mtime = os.stat(self.path).st_mtime
        except OSError as e:
            self._mtime = None
            raise ConfigUnavailable(f"{self.path}: {e}") from e
        if mtime == self._mtime:
            return None
        payload = self.load()
        self._mtime = mtime
        return payload

    def load(self) -> TimerPayload:
        try:
            text = self.path.read_text()
        except OSError as e:
            self._mtime = None
            raise ConfigUnavailable(f"{self.path}: {e}") from e
        self._log.info("Reading timer file %s", self.path)
        return self.parse(text)

    def parse(self, text: str) -> TimerPayload:
        try:
            doc = TimerFile.model_validate(yaml.safe_load(text) or {})
        except (yaml.YAMLError, ValidationError) as e:
            self._log.warning("Timer file rejected: %s", e)
            return TimerPayload(valid=False, error=str(e))
        payload = build_payload(doc)
        if not payload.valid:
            self._log.warning("Timer file has invalid times: %s", payload.error)
        return payload
