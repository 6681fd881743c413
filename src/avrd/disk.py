from __future__ import annotations
import logging
import os
from pathlib import Path
from typing import Dict, Iterable, Optional


def used_pct(blocks: int, avail: int) -> int:
    """Used percentage, rounding the free share up."""
    return 100 - int((avail / blocks) * 100.0 + 0.99)


class DiskProbe:
    def usage(self, partitions: Iterable[str]) -> Dict[str, Optional[int]]: raise NotImplementedError


class StatvfsProbe(DiskProbe):
    """Maps partitions (e.g. 'sda1') to mount points via the mounts table and stats them.
    A partition that is not mounted, or cannot be stat'ed, reports None."""
    def __init__(self, mounts_file: str = '/proc/mounts'):
        self.path = Path(mounts_file)
        self._log = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def mount_points(self) -> Dict[str, str]:
        table: Dict[str, str] = {}
        try:
            text = self.path.read_text()
        except OSError as e:
            self._log.warning("Cannot read %s: %s", self.path, e)
            return table
        for line in text.splitlines():
            fields = line.split()
            if len(fields) >= 2:
                table.setdefault(fields[0].lower(), fields[1])
        return table

    def usage(self, partitions: Iterable[str]) -> Dict[str, Optional[int]]:
        mounts = self.mount_points()
        out: Dict[str, Optional[int]] = {}
        for part in partitions:
            mnt = mounts.get(f"/dev/{part}".lower())
            if mnt is None:
                self._log.debug("/dev/%s not mounted", part)
                out[part] = None
                continue
            try:
                st = os.statvfs(mnt)
            except OSError as e:
                self._log.warning("statvfs(%s) failed: %s", mnt, e)
                out[part] = None
                continue
            out[part] = used_pct(st.f_blocks, st.f_bavail) if st.f_blocks else None
        return out
