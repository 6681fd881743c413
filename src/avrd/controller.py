from __future__ import annotations
import datetime as dt
import logging
import time
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Optional

from avrd import protocol
from avrd.actions import Action, ActionExecutor, ErrorCode
from avrd.disk import DiskProbe
from avrd.protocol import Notification, ProtocolEncoder
from avrd.provider import ConfigProvider, ConfigUnavailable, TimerPayload
from avrd.schedule import InvalidSchedule, ScheduleEngine

HOLD_TIME_S = 1            # double-press window
FIVE_MINUTES_S = 5 * 60
EM_MODE_TIME_S = 20
SP_MONITOR_TIME_S = 10     # grace period re-announce delay
SETTLE_POLL_S = 2
FAST_POLL_S = 0.00025
FAN_FAULT_POLL_S = 2
MAX_EXTENSIONS = 9
INITIAL_COUNTDOWN_S = 9999


class Housekeeping(IntEnum):
    FAST_POLL = -2
    IDLE = 0
    CHECK_CONFIG = 1
    CHECK_DISK = 2
    WAIT = 3


class FanState(IntEnum):
    DISABLED = -1
    IDLE = 0
    RECOVERING = 1     # one-shot, back to idle on the next tick
    FAULT = 2          # waiting for the seize time to pass
    CONFIRMED = 5
    HIGH_SPEED = 6


class Countdown(Enum):
    PENDING = "pending"   # five-minute warning not yet given
    WARNED = "warned"
    GRACE = "grace"       # shutdown paused by button extensions


class ArmReason(Enum):
    FILE_UPDATE = "file update"
    REVALIDATION = "re-validation"
    CLOCK_SKEW = "clock skew"


class Clock:
    def time(self) -> float: return time.time()
    def now(self) -> dt.datetime: return dt.datetime.now()


@dataclass
class Button:
    pushed: bool = False
    pressed: bool = False    # hold action already consumed this push


@dataclass
class ControllerState:
    check_state: Housekeeping = Housekeeping.CHECK_CONFIG
    fan: FanState = FanState.IDLE
    shutdown_s: float = INITIAL_COUNTDOWN_S
    countdown: Countdown = Countdown.PENDING
    extensions: int = 0
    extended: bool = False
    shutdown_latched: bool = False
    power: Button = field(default_factory=Button)
    reset: Button = field(default_factory=Button)
    reset_presses: int = 0
    last_activity: float = 0.0
    last_release: float = 0.0
    last_tick: float = 0.0
    fault_at: float = 0.0
    disk_full: bool = False
    disk_warning_armed: bool = True
    disk_used: int = 0
    keep_alive: int = protocol.KEEPALIVE_TIMER_ON
    config_unreachable: bool = False

    @property
    def in_grace(self) -> bool:
        return self.countdown is Countdown.GRACE

    @property
    def scanning(self) -> bool:
        return self.power.pushed or self.reset.pushed or self.in_grace


class Controller:
    """
    Event loop for the AVR. One timed wait on the serial channel per iteration;
    everything else (button debounce, countdown, config reload, disk checks,
    fan supervision) is driven from what that wait returns.
    """

    def __init__(self, channel, engine: ScheduleEngine, provider: ConfigProvider,
                 actions: ActionExecutor, disk: DiskProbe, clock: Optional[Clock] = None,
                 em_mode: bool = False):
        self._channel = channel; self._engine = engine; self._provider = provider
        self._actions = actions; self._disk = disk; self._clock = clock or Clock()
        self._em_mode = em_mode
        self._encoder = ProtocolEncoder(channel.write)
        self._stop_requested = False
        self._log = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        now = self._clock.time()
        self.s = ControllerState(last_activity=now, last_release=now, last_tick=now)

    @property
    def running(self) -> bool:
        return self._channel.is_open and not self._stop_requested

    # ---------- lifecycle ----------

    def start(self) -> None:
        self._encoder.initialise()
        self._log.info("AVR initialised em_mode=%s", self._em_mode)

    def run(self) -> None:
        self.start()
        try:
            while self.running:
                self.step()
        finally:
            self.shutdown()

    def step(self) -> None:
        frame = self._channel.wait(self.poll_timeout())
        if self._stop_requested:
            return
        now = self._clock.time()
        if frame:
            self.on_notification(frame[0], now)
        else:
            self.on_timeout(now)

    def request_stop(self) -> None:
        """Safe from a signal handler: sets a flag and wakes the pending wait."""
        self._stop_requested = True
        self._channel.cancel_wait()

    def shutdown(self) -> None:
        if not self._channel.is_open:
            return
        self._log.info("Stopping AVR watchdog and closing %s", getattr(self._channel, 'device', 'channel'))
        try:
            self._encoder.stop_watchdog()
        finally:
            self._channel.close()
            self._engine.clear()

    # ---------- timeout selection ----------

    def poll_timeout(self) -> float:
        s = self.s
        timeout: float = self._engine.settings.refresh_s
        if s.check_state > Housekeeping.IDLE:
            # pick up a widened refresh soon after start/reload
            timeout = SETTLE_POLL_S
        elif s.scanning:
            timeout = FAST_POLL_S
            s.check_state = Housekeeping.FAST_POLL

        if s.check_state != Housekeeping.FAST_POLL:
            if self._engine.enabled and not s.shutdown_latched:
                timeout = min(timeout, max(0.0, s.shutdown_s))
            if s.fan > FanState.IDLE:
                if s.fan == FanState.HIGH_SPEED:
                    left = s.fault_at + FIVE_MINUTES_S - self._clock.time()
                    timeout = min(timeout, max(FAN_FAULT_POLL_S, self._engine.settings.fan_seize_s),
                                  max(0.0, left))
                else:
                    timeout = min(timeout, FAN_FAULT_POLL_S)
        return timeout

    # ---------- notifications ----------

    def on_notification(self, code: int, now: float) -> None:
        s = self.s
        s.check_state = Housekeeping.FAST_POLL
        try:
            note = Notification(code)
        except ValueError:
            self._log.debug("Unknown AVR message 0x%02X", code)
            note = None

        if note is Notification.POWER_RELEASE:
            self._power_released(now)
        elif note is Notification.POWER_PRESS:
            self._run(Action.POWER_PRESS)
            s.power = Button(pushed=True)
        elif note is Notification.RESET_RELEASE:
            self._reset_released(now)
        elif note is Notification.RESET_PRESS:
            self._run(Action.RESET_PRESS)
            s.reset = Button(pushed=True)
        elif note is Notification.FAN_HIGH_SPEED:
            self._log.info("Fan running at high speed")
            s.fan = FanState.HIGH_SPEED; s.fault_at = now
        elif note is Notification.FAN_FAULT:
            self._log.warning("Fan fault reported (state %d)", s.fan)
            self._run(Action.FAN_FAULT, int(s.fan))
            if self._engine.settings.fan_seize_s > 0:
                s.fan = FanState.FAULT; s.fault_at = now
            else:
                s.fan = FanState.DISABLED
        elif note is Notification.HALT:
            self._log.warning("AVR requested halt")
            self.shutdown()
            self._run(Action.AVR_HALT)
        elif note in (Notification.ACK, Notification.INIT_COMPLETE):
            self._log.debug("AVR %s", note.name)

        s.last_activity = now

    def _power_released(self, now: float) -> None:
        s = self.s
        if not s.power.pressed:
            action = Action.POWER_RELEASE
            if now - s.last_release <= HOLD_TIME_S and not s.in_grace:
                action = Action.USER_RESET
            elif self._engine.enabled and (s.shutdown_s < FIVE_MINUTES_S or s.in_grace):
                self._extend_countdown()
                if s.shutdown_latched:
                    # countdown restarts from here, it froze while latched
                    s.shutdown_latched = False
                    s.last_tick = now
            self._run(action)
            s.last_release = now
        s.power = Button()

    def _reset_released(self, now: float) -> None:
        s = self.s
        if not s.reset.pressed:
            action, arg = Action.RESET_RELEASE, 0
            if now - s.last_release <= HOLD_TIME_S:
                action, arg = Action.SPECIAL_RESET, s.reset_presses
                s.reset_presses += 1
            self._run(action, arg)
            s.last_release = now
        s.reset = Button()

    def _extend_countdown(self) -> None:
        s = self.s
        s.shutdown_s += FIVE_MINUTES_S
        s.extended = True
        if s.countdown is Countdown.PENDING:
            s.countdown = Countdown.WARNED
        elif s.countdown is Countdown.WARNED:
            s.countdown = Countdown.GRACE; s.extensions = 1
        else:
            s.extensions += 1
            if s.extensions >= MAX_EXTENSIONS:
                s.countdown = Countdown.PENDING; s.extensions = 0
        self._log.info("Shutdown extended to %ds (%s, %d extensions)", s.shutdown_s, s.countdown.value, s.extensions)

    # ---------- timeouts ----------

    def on_timeout(self, now: float) -> None:
        s = self.s
        self._check_held_buttons(now)
        if not s.scanning and not s.shutdown_latched:
            self._tick_countdown(now)
            s.last_tick = now
            self._housekeeping()
        self._tick_fan(now)
        self._check_grace(now)

    def _check_held_buttons(self, now: float) -> None:
        s = self.s
        if s.last_activity + self._engine.settings.hold_s < now and s.power.pushed:
            if not s.extended:
                self.arm_timer(ArmReason.REVALIDATION)
            self._run(Action.USER_POWER_DOWN)
            s.power = Button(pressed=True)
        if s.last_activity + EM_MODE_TIME_S < now and s.reset.pushed and self._em_mode:
            self._run(Action.EM_MODE)
            s.reset = Button(pressed=True)

    def _tick_countdown(self, now: float) -> None:
        s = self.s
        if not self._engine.enabled:
            return
        if s.shutdown_s <= 0:
            s.shutdown_latched = True
            self._log.warning("Timed shutdown")
            self._run(Action.TIMED_SHUTDOWN)
            return
        elapsed = now - s.last_tick
        if abs(elapsed) >= self._engine.settings.refresh_s + 60:
            self._log.warning("Clock moved %.0fs between ticks; recomputing schedule", elapsed)
            self.arm_timer(ArmReason.CLOCK_SKEW)
            return
        s.shutdown_s -= elapsed
        if s.shutdown_s < FIVE_MINUTES_S and s.countdown is Countdown.PENDING:
            s.countdown = Countdown.WARNED
            self._run(Action.FIVE_SHUTDOWN, int(s.shutdown_s))
            if not s.extended:
                self.arm_timer(ArmReason.REVALIDATION)

    def _housekeeping(self) -> None:
        s = self.s
        if s.check_state == Housekeeping.IDLE:
            s.check_state = Housekeeping.CHECK_CONFIG
        elif s.check_state == Housekeeping.CHECK_CONFIG:
            self.reload_config()
            s.check_state = Housekeeping.CHECK_DISK
        elif s.check_state in (Housekeeping.CHECK_DISK, Housekeeping.FAST_POLL):
            self.check_disk()
            s.check_state = Housekeeping.WAIT
        elif s.check_state == Housekeeping.WAIT:
            s.check_state = Housekeeping.IDLE

    def _tick_fan(self, now: float) -> None:
        s = self.s
        if s.fan == FanState.RECOVERING:
            s.fan = FanState.IDLE
        elif s.fan == FanState.FAULT:
            if s.fault_at + self._engine.settings.fan_seize_s < now:
                self._log.error("Fan has not restarted after %ds", self._engine.settings.fan_seize_s)
                self._run(Action.FAN_FAULT, 4)
                s.fan = FanState.CONFIRMED
        elif s.fan == FanState.HIGH_SPEED:
            if now - s.fault_at >= FIVE_MINUTES_S:
                self._encoder.fan_slow_down()
                s.fan = FanState.RECOVERING

    def _check_grace(self, now: float) -> None:
        s = self.s
        if s.in_grace and s.last_release + SP_MONITOR_TIME_S < now:
            self._run(Action.FIVE_SHUTDOWN, int(s.shutdown_s / 60))
            s.countdown = Countdown.PENDING; s.extensions = 0
            s.last_release = 0.0

    # ---------- schedule / config / disk ----------

    def arm_timer(self, reason: ArmReason) -> None:
        """Recompute the schedule and push the wake time (or timer-off) to the AVR."""
        s = self.s
        result = None
        if self._engine.enabled:
            try:
                result = self._engine.compute_schedule(self._clock.now())
            except InvalidSchedule as e:
                self._log.error("Schedule rejected: %s", e)
                self._engine.disable()
                self.report(ErrorCode.INVALID_SCHEDULE)

        if result is not None:
            if reason is not ArmReason.REVALIDATION:
                s.countdown = Countdown.PENDING; s.extensions = 0; s.extended = False
            s.shutdown_s = result.shutdown_s
            s.last_tick = self._clock.time()
            if result.clamped:
                self.report(ErrorCode.RESOLUTION_EXCEEDED)
            self._log.info("Timer is set with %s-%s (following timer %s)",
                           result.off_at.strftime('%m/%d %H:%M'), result.on_at.strftime('%m/%d %H:%M'),
                           reason.value)
            self._encoder.upload_wake(result.register)
            s.keep_alive = protocol.KEEPALIVE_TIMER_ON
        else:
            self._log.info("Timer disabled (following timer %s)", reason.value)
            self._encoder.disable_timer()
            s.keep_alive = protocol.KEEPALIVE_TIMER_OFF
        self._encoder.send_byte(s.keep_alive)

    def reload_config(self) -> bool:
        s = self.s
        try:
            payload = self._provider.poll()
        except ConfigUnavailable as e:
            if not s.config_unreachable:
                self._log.error("Timer configuration unreachable: %s", e)
                s.config_unreachable = True
                self._engine.disable()
                self.arm_timer(ArmReason.FILE_UPDATE)
                self.report(ErrorCode.CONFIG_UNREACHABLE)
            return False
        s.config_unreachable = False
        if payload is None:
            return False
        self.apply(payload)
        return True

    def apply(self, payload: TimerPayload) -> None:
        self._engine.load(payload.off_events, payload.on_events, payload.settings)
        if not payload.valid:
            self.report(ErrorCode.INVALID_SCHEDULE)
        self.arm_timer(ArmReason.FILE_UPDATE)

    def check_disk(self) -> None:
        s = self.s
        settings = self._engine.settings
        cmd = s.keep_alive
        full = False
        if settings.disk_check_pct > 0 and settings.partitions:
            usage = self._disk.usage(settings.partitions)
            if any(v is None for v in usage.values()):
                self._encoder.mount_unavailable()
            known = [v for v in usage.values() if v is not None]
            s.disk_used = max(known, default=0)
            full = any(v >= settings.disk_check_pct for v in known)

        if full and s.disk_warning_armed:
            s.disk_warning_armed = settings.pester_on_disk_full
            self._log.warning("Disk usage %d%% at or above %d%%", s.disk_used, settings.disk_check_pct)
            self._run(Action.DISK_FULL, s.disk_used)

        if full != s.disk_full:
            cmd = protocol.DISK_FULL if full else protocol.DISK_NOT_FULL
            if not full:
                s.disk_warning_armed = True
                self._run(Action.DISK_FULL, 0)
            s.disk_full = full
        self._encoder.send_byte(cmd)

    # ---------- actions ----------

    def report(self, code: ErrorCode) -> None:
        self._log.warning("Error %d (%s)", int(code), code.name)
        self._run(Action.ERRORED, int(code))

    def _run(self, symbol: str, arg: int = 0) -> None:
        self._actions.execute(symbol, arg)
