from types import SimpleNamespace
from avrd import disk
from avrd.disk import StatvfsProbe, used_pct

def test_used_pct_rounds_free_space_up():
    assert used_pct(1000, 250) == 75
    assert used_pct(1000, 101) == 89
    assert used_pct(1000, 0) == 100

def test_probe_maps_partitions_to_mounts(tmp_path, monkeypatch):
    mounts = tmp_path / "mounts"
    mounts.write_text("/dev/sda1 / ext3 rw 0 0\n/dev/SDA2 /mnt ext3 rw 0 0\nproc /proc proc rw 0 0\n")

    def fake_statvfs(path):
        if path == "/":
            return SimpleNamespace(f_blocks=1000, f_bavail=100)
        raise OSError("gone")
    monkeypatch.setattr(disk.os, "statvfs", fake_statvfs)

    usage = StatvfsProbe(str(mounts)).usage(["sda1", "sda2", "sdb1"])
    assert usage == {"sda1": 90, "sda2": None, "sdb1": None}

def test_probe_without_mount_table(tmp_path):
    assert StatvfsProbe(str(tmp_path / "nope")).usage(["sda1"]) == {"sda1": None}
