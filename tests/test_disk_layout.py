"""Tests for storage/disk_layout.py - partition table application."""

import pytest

from image_installer.config.installer import parse_disk_layout
from image_installer.domain.models import DiskLayout
from image_installer.storage.disk_layout import (
    DiskLayoutApplier,
    build_sfdisk_script,
    describe_layout,
)
from image_installer.storage.exceptions import ResourceError, ToolFailureError


class TestBuildSfdiskScript:
    """Tests for build_sfdisk_script()."""

    def test_primary_partitions(self, layout_without_recovery):
        script = build_sfdisk_script(layout_without_recovery)

        assert script.splitlines() == [
            "label: dos",
            "unit: sectors",
            "",
            "/dev/sda1 : start=2048, size=65536, type=c",
            "/dev/sda2 : start=67584, size=2048, type=83",
            "/dev/sda3 : start=69632, size=32768, type=83",
            "/dev/sda4 : start=102400, size=204800, type=83",
        ]

    def test_extended_partition_for_logical_entries(self, android_layout):
        lines = build_sfdisk_script(android_layout).splitlines()

        assert lines[3] == "/dev/sda1 : start=2048, size=65536, type=c, bootable"
        assert lines[6] == "/dev/sda4 : start=102400, size=368643, type=5"
        assert lines[7] == "/dev/sda5 : start=102401, size=32768, type=83"
        assert lines[8] == "/dev/sda6 : start=135170, size=204800, type=83"
        assert lines[9] == "/dev/sda7 : start=339971, size=131072, type=83"

    def test_gpt_names_partitions(self):
        layout = parse_disk_layout(
            {
                "device": "/dev/nvme0n1",
                "scheme": "gpt",
                "skip_lba": 2048,
                "partitions": [
                    {"name": "esp", "len_kb": 1024, "type": "efi"},
                    {"name": "system", "len_kb": 2048},
                ],
            }
        )

        lines = build_sfdisk_script(layout).splitlines()

        assert lines[0] == "label: gpt"
        assert lines[3] == (
            '/dev/nvme0n1p1 : start=2048, size=2048, '
            'type=C12A7328-F81F-11D2-BA4B-00A0C93EC93B, name="esp"'
        )
        assert lines[4].startswith("/dev/nvme0n1p2 : start=4096, size=4096")


class TestDescribeLayout:
    def test_lists_partition_devices(self, android_layout):
        lines = describe_layout(android_layout)

        assert lines[0] == "Device: /dev/sda"
        assert any(line.strip().startswith("/dev/sda5: name=recovery") for line in lines)


class TestDiskLayoutApplier:
    """Tests for DiskLayoutApplier."""

    def test_apply_feeds_script_to_sfdisk(self, fake_runner, settings, android_layout):
        DiskLayoutApplier(fake_runner, settings).apply(android_layout)

        assert fake_runner.calls == [["sfdisk", "--force", "/dev/sda"]]
        assert fake_runner.inputs == [build_sfdisk_script(android_layout)]
        assert fake_runner.syncs == 1

    def test_apply_failure(self, runner_factory, settings, android_layout):
        runner = runner_factory({"sfdisk": 1})

        with pytest.raises(ToolFailureError, match="sfdisk"):
            DiskLayoutApplier(runner, settings).apply(android_layout)

    def test_apply_test_mode(self, fake_runner, settings, android_layout):
        DiskLayoutApplier(fake_runner, settings).apply(android_layout, test_mode=True)

        assert fake_runner.calls == []

    def test_clear_leading_sectors(self, tmp_path, fake_runner, settings):
        disk = tmp_path / "disk.img"
        disk.write_bytes(b"\xaa" * 512 * 8)
        layout = DiskLayout(device=str(disk), skip_lba=4)

        zeroed = DiskLayoutApplier(fake_runner, settings).clear_leading_sectors(layout)

        data = disk.read_bytes()
        assert zeroed == 3 * 512
        assert data[:512] == b"\xaa" * 512
        assert data[512:2048] == b"\0" * 1536
        assert data[2048:] == b"\xaa" * 2048

    def test_clear_leading_sectors_test_mode(self, tmp_path, fake_runner, settings):
        disk = tmp_path / "disk.img"
        disk.write_bytes(b"\xaa" * 512 * 8)
        layout = DiskLayout(device=str(disk), skip_lba=4)

        DiskLayoutApplier(fake_runner, settings).clear_leading_sectors(layout, test_mode=True)

        assert disk.read_bytes() == b"\xaa" * 512 * 8

    def test_clear_leading_sectors_nothing_to_do(self, fake_runner, settings):
        layout = DiskLayout(device="/dev/sda", skip_lba=1)

        assert DiskLayoutApplier(fake_runner, settings).clear_leading_sectors(layout) == 0

    def test_clear_leading_sectors_unwritable_device(self, tmp_path, fake_runner, settings):
        layout = DiskLayout(device=str(tmp_path / "missing"), skip_lba=4)

        with pytest.raises(ResourceError):
            DiskLayoutApplier(fake_runner, settings).clear_leading_sectors(layout)
