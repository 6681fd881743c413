from __future__ import annotations
import logging
import subprocess
from enum import IntEnum
from typing import List


class Action:
    SPECIAL_RESET = '0'
    AVR_HALT = '1'
    TIMED_SHUTDOWN = '2'
    POWER_RELEASE = '3'
    POWER_PRESS = '4'
    RESET_RELEASE = '5'
    RESET_PRESS = '6'
    USER_POWER_DOWN = '7'
    USER_RESET = '8'
    DISK_FULL = '9'
    FAN_FAULT = 'F'
    EM_MODE = 'E'
    FIVE_SHUTDOWN = 'S'
    ERRORED = 'D'


class ErrorCode(IntEnum):
    CONFIG_UNREACHABLE = 1
    RESOLUTION_EXCEEDED = 2
    INVALID_SCHEDULE = 3


class ActionExecutor:
    def execute(self, symbol: str, arg: int = 0) -> None: raise NotImplementedError


class ScriptExecutor(ActionExecutor):
    """
    Runs `<script> <symbol> <device> <arg>` detached, never waiting on it.
    Finished children are reaped on the next call.
    """
    def __init__(self, script: str, device: str):
        self.script = script; self.device = device
        self._children: List[subprocess.Popen] = []
        self._log = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def execute(self, symbol: str, arg: int = 0) -> None:
        self._children = [p for p in self._children if p.poll() is None]
        argv = [self.script, symbol, self.device, str(int(arg))]
        self._log.info("Event %s arg=%d", symbol, int(arg))
        try:
            proc = subprocess.Popen(argv, stdin=subprocess.DEVNULL, stdout=subprocess.DEVNULL,
                                    stderr=subprocess.DEVNULL, start_new_session=True)
        except OSError as e:
            self._log.error("Event script %s failed to start: %s", self.script, e)
            return
        self._children.append(proc)
