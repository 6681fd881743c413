from __future__ import annotations
import logging
from typing import Optional

import serial

FRAME_MAX = 16


class SerialChannel:
    """The one serial link to the AVR: 9600 8E2, blocking timed reads."""

    def __init__(self, device: str, baudrate: int = 9600):
        self.device = device; self.baudrate = baudrate
        self._port: Optional[serial.Serial] = None
        self._log = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @property
    def is_open(self) -> bool:
        return self._port is not None and self._port.is_open

    def open(self) -> None:
        if self.is_open:
            return
        self._port = serial.Serial(
            port=self.device,
            baudrate=self.baudrate,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_EVEN,
            stopbits=serial.STOPBITS_TWO,
            timeout=None,
        )
        self._port.reset_input_buffer(); self._port.reset_output_buffer()
        self._log.info("Serial port %s opened at %d baud", self.device, self.baudrate)

    def write(self, data: bytes) -> None:
        if not self.is_open:
            self._log.debug("Dropping write on closed port: %s", data.hex())
            return
        self._port.write(data)
        self._port.flush()

    def wait(self, timeout: float) -> bytes:
        """Block up to timeout seconds for one frame; b'' on timeout."""
        if not self.is_open:
            return b""
        timeout = max(0.0, float(timeout))
        # setting the timeout reprograms the tty, so only do it on change
        if self._port.timeout != timeout:
            self._port.timeout = timeout
        first = self._port.read(1)
        if not first:
            return b""
        rest = self._port.read(min(self._port.in_waiting, FRAME_MAX - 1))
        frame = first + rest
        self._log.debug("RX (%d): %s", len(frame), frame.hex())
        return frame

    def cancel_wait(self) -> None:
        # POSIX ports abort a pending read through a self-pipe
        port = self._port
        if port is not None and hasattr(port, "cancel_read"):
            port.cancel_read()

    def close(self) -> None:
        if self._port is not None:
            try:
                self._port.close()
            finally:
                self._port = None
            self._log.info("Serial port %s closed", self.device)
