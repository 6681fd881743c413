from __future__ import annotations
import logging
from enum import IntEnum
from typing import Callable, List

REPEAT = 4

INIT_SEQUENCE = (0x41, 0x46, 0x4A, 0x3E)
CLEAR_DISK_ACTIVITY = 0x58
STOP_WATCHDOG = 0x4B
MOUNT_UNAVAILABLE = 0x59
DISK_NOT_FULL = 0x56
DISK_FULL = 0x57
KEEPALIVE_TIMER_OFF = 0x5A
KEEPALIVE_TIMER_ON = 0x5B
WAKE_BEGIN = (0x3E, 0x3C, 0x3A, 0x38)
WAKE_END = 0x3F
TIMER_OFF = 0x3E
FAN_SLOW_DOWN = 0x5C

WAKE_BITS = 12


class Notification(IntEnum):
    POWER_RELEASE = 0x20
    POWER_PRESS = 0x21
    RESET_RELEASE = 0x22
    RESET_PRESS = 0x23
    FAN_HIGH_SPEED = 0x24
    FAN_FAULT = 0x25
    ACK = 0x30
    HALT = 0x31
    INIT_COMPLETE = 0x33


def wake_bits(register: int) -> List[int]:
    """One byte per register bit, MSB first: (0x20 | bit) + position*2."""
    out = []
    for pos in range(WAKE_BITS - 1, -1, -1):
        bit = (register >> pos) & 1
        out.append((0x21 if bit else 0x20) + pos * 2)
    return out


class ProtocolEncoder:
    def __init__(self, write: Callable[[bytes], object]):
        self._write = write
        self._log = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def send_byte(self, value: int) -> None:
        if not 0 <= value <= 0xFF:
            raise ValueError(f"not a byte: {value}")
        self._log.debug("TX 0x%02X", value)
        self._write(bytes([value]) * REPEAT)

    def send(self, values) -> None:
        for v in values: self.send_byte(v)

    def initialise(self) -> None:
        self.send(INIT_SEQUENCE)
        self.send_byte(CLEAR_DISK_ACTIVITY)

    def upload_wake(self, register: int) -> None:
        if not 0 <= register <= 0xFFF:
            raise ValueError(f"wake register out of range: {register}")
        self.send(WAKE_BEGIN)
        self.send(wake_bits(register))
        self.send_byte(WAKE_END)

    def disable_timer(self) -> None: self.send_byte(TIMER_OFF)
    def stop_watchdog(self) -> None: self.send_byte(STOP_WATCHDOG)
    def mount_unavailable(self) -> None: self.send_byte(MOUNT_UNAVAILABLE)
    def disk_led(self, full: bool) -> None: self.send_byte(DISK_FULL if full else DISK_NOT_FULL)
    def fan_slow_down(self) -> None: self.send_byte(FAN_SLOW_DOWN)
