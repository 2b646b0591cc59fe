"""Tests for services/descriptors.py - image entry validation.

This test suite covers:
- Footer size parsing with K/M/G suffixes and plain byte counts
- Partition/offset exclusivity and partition lookup
- mkfs entries (label, reserved footer, bootloader compatibility)
- File-backed entries (required fields, footer reduction, flag handling)
"""

import pytest

from image_installer.config.installer import ImageEntry, parse_disk_layout
from image_installer.domain.models import (
    Bootloader,
    ImageType,
    InstallFlag,
    MkfsType,
)
from image_installer.services.descriptors import (
    parse_flags,
    parse_footer_size,
    parse_offset,
    resolve_image,
)
from image_installer.storage.exceptions import (
    ConfigurationError,
    FooterSizeError,
    PartitionNotFoundError,
)


SYSTEM_START_LBA = 135170


class TestParseFooterSize:
    """Tests for parse_footer_size()."""

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("16K", 16),
            ("4096K", 4096),
            ("2M", 2048),
            ("1G", 1048576),
            ("4096", 4),
            ("1000", 0),
            ("0K", 0),
        ],
    )
    def test_valid_sizes(self, value, expected):
        assert parse_footer_size(value) == expected

    @pytest.mark.parametrize("value", ["", "12X", "12k", "K", "-5K", "1.5M", "abc"])
    def test_invalid_sizes(self, value):
        with pytest.raises(FooterSizeError):
            parse_footer_size(value, "system")


class TestParseHelpers:
    """Tests for parse_flags() and parse_offset()."""

    def test_flags_are_comma_separated(self):
        assert parse_flags("resize, addjournal") == {InstallFlag.RESIZE, InstallFlag.ADD_JOURNAL}

    def test_missing_flags(self):
        assert parse_flags(None) == set()

    def test_unknown_flag(self):
        with pytest.raises(ConfigurationError, match="Unknown flag 'shrink'"):
            parse_flags("resize,shrink", "system")

    @pytest.mark.parametrize(
        "value, expected",
        [("0", 0), ("512", 512), ("0x200", 512), ("0100", 64), ("00", 0)],
    )
    def test_offsets(self, value, expected):
        assert parse_offset(value) == expected

    @pytest.mark.parametrize("value", ["-1", "twelve", "089"])
    def test_invalid_offsets(self, value):
        with pytest.raises(ConfigurationError):
            parse_offset(value)


class TestResolvePartitionAndOffset:
    """Tests for target resolution."""

    def test_partition_and_offset_rejected(self, android_layout):
        image = ImageEntry("system", {"partition": "system", "offset": "0", "filename": "s.img"})

        with pytest.raises(ConfigurationError, match="partition name AND an offset"):
            resolve_image(image, android_layout)

    def test_unknown_partition(self, android_layout):
        image = ImageEntry("vendor", {"partition": "vendor", "filename": "v.img", "type": "ext4"})

        with pytest.raises(PartitionNotFoundError) as excinfo:
            resolve_image(image, android_layout)

        assert excinfo.value.partition_name == "vendor"

    def test_partition_target(self, android_layout):
        image = ImageEntry("system", {"partition": "system", "filename": "s.img", "type": "ext4"})

        descriptor = resolve_image(image, android_layout)

        assert descriptor.device_path == "/dev/sda6"
        assert descriptor.offset == SYSTEM_START_LBA * 512
        assert descriptor.part_size_kb == 102400
        assert descriptor.flags == frozenset()

    def test_offset_only_raw_image(self, android_layout):
        image = ImageEntry("mbr", {"offset": "0x200", "filename": "mbr.bin", "type": "raw"})

        descriptor = resolve_image(image, android_layout)

        assert descriptor.device_path == "/dev/sda"
        assert descriptor.offset == 512
        assert descriptor.partition is None
        assert descriptor.image_type == ImageType.RAW

    def test_leading_zero_offset_is_octal(self, android_layout):
        image = ImageEntry("mbr", {"offset": "0100", "filename": "mbr.bin", "type": "raw"})

        assert resolve_image(image, android_layout).offset == 64

    def test_offset_only_ext_image_rejected(self, android_layout):
        image = ImageEntry("sys", {"offset": "4096", "filename": "s.img", "type": "ext4"})

        with pytest.raises(ConfigurationError, match="Only raw images"):
            resolve_image(image, android_layout)

    def test_no_target_rejected(self, android_layout):
        image = ImageEntry("sys", {"filename": "s.img", "type": "raw"})

        with pytest.raises(ConfigurationError, match="Offset to write into the disk is unknown"):
            resolve_image(image, android_layout)


class TestResolveFileImages:
    """Tests for entries that write an image file."""

    def test_footer_reduces_size_and_forces_resize(self, android_layout):
        image = ImageEntry(
            "system",
            {"partition": "system", "filename": "s.img", "type": "ext4", "footer": "4096K"},
        )

        descriptor = resolve_image(image, android_layout)

        assert descriptor.part_size_kb == 98304
        assert InstallFlag.RESIZE in descriptor.flags
        assert descriptor.footer_size_kb == 0

    def test_footer_larger_than_partition_is_not_applied(self, android_layout):
        image = ImageEntry(
            "misc", {"partition": "misc", "filename": "m.img", "type": "raw", "footer": "2M"}
        )

        descriptor = resolve_image(image, android_layout)

        assert descriptor.part_size_kb == 1024
        assert InstallFlag.RESIZE not in descriptor.flags

    def test_ext3_drops_add_journal(self, android_layout):
        image = ImageEntry(
            "system",
            {"partition": "system", "filename": "s.img", "type": "ext3", "flags": "addjournal,resize"},
        )

        descriptor = resolve_image(image, android_layout)

        assert descriptor.flags == frozenset({InstallFlag.RESIZE})

    def test_ext4_keeps_add_journal(self, android_layout):
        image = ImageEntry(
            "system",
            {"partition": "system", "filename": "s.img", "type": "ext4", "flags": "addjournal"},
        )

        assert InstallFlag.ADD_JOURNAL in resolve_image(image, android_layout).flags

    def test_filename_required(self, android_layout):
        image = ImageEntry("system", {"partition": "system", "type": "ext4"})

        with pytest.raises(ConfigurationError, match="Filename is required"):
            resolve_image(image, android_layout)

    def test_type_required(self, android_layout):
        image = ImageEntry("system", {"partition": "system", "filename": "s.img"})

        with pytest.raises(ConfigurationError, match="Type is required"):
            resolve_image(image, android_layout)

    def test_unknown_type(self, android_layout):
        image = ImageEntry("system", {"partition": "system", "filename": "s.img", "type": "xfs"})

        with pytest.raises(ConfigurationError, match="Unknown image type"):
            resolve_image(image, android_layout)

    def test_bootloader_without_mkfs_rejected(self, android_layout):
        image = ImageEntry(
            "boot",
            {"partition": "boot", "filename": "b.img", "type": "raw", "bootloader": "syslinux"},
        )

        with pytest.raises(ConfigurationError, match="mkfs = vfat"):
            resolve_image(image, android_layout)


class TestResolveMkfs:
    """Tests for entries that create a fresh filesystem."""

    def test_mkfs_with_filename_rejected(self, android_layout):
        image = ImageEntry("data", {"partition": "data", "mkfs": "ext4", "filename": "d.img"})

        with pytest.raises(ConfigurationError, match="meaningless"):
            resolve_image(image, android_layout)

    def test_mkfs_needs_partition(self, android_layout):
        image = ImageEntry("data", {"offset": "0", "mkfs": "ext4"})

        with pytest.raises(ConfigurationError, match="Target partition required"):
            resolve_image(image, android_layout)

    def test_ext4_footer_becomes_reserved_bytes(self, android_layout):
        image = ImageEntry("data", {"partition": "data", "mkfs": "ext4", "footer": "4096K"})

        descriptor = resolve_image(image, android_layout)

        assert descriptor.mkfs == MkfsType.EXT4
        assert descriptor.reserved_bytes == -4194304
        assert descriptor.footer_size_kb == 0
        assert descriptor.volume_label == "data"
        assert descriptor.device_path == "/dev/sda7"

    def test_vfat_with_syslinux(self, android_layout):
        image = ImageEntry(
            "bootloader", {"partition": "bootloader", "mkfs": "vfat", "bootloader": "syslinux"}
        )

        descriptor = resolve_image(image, android_layout)

        assert descriptor.is_mkfs
        assert descriptor.bootloader == Bootloader.SYSLINUX
        assert descriptor.device_path == "/dev/sda1"

    def test_syslinux_needs_vfat(self, android_layout):
        image = ImageEntry("data", {"partition": "data", "mkfs": "ext4", "bootloader": "syslinux"})

        with pytest.raises(ConfigurationError, match="non-FAT"):
            resolve_image(image, android_layout)

    def test_unknown_mkfs_type(self, android_layout):
        image = ImageEntry("data", {"partition": "data", "mkfs": "btrfs"})

        with pytest.raises(ConfigurationError, match="Unknown filesystem type"):
            resolve_image(image, android_layout)

    def test_volume_label_truncated(self):
        layout = parse_disk_layout(
            {
                "device": "/dev/mmcblk0",
                "partitions": [{"name": "persistent_storage_area", "len_kb": 1024}],
            }
        )
        image = ImageEntry("p", {"partition": "persistent_storage_area", "mkfs": "ext2"})

        descriptor = resolve_image(image, layout)

        assert descriptor.volume_label == "persistent_stora"
        assert descriptor.device_path == "/dev/mmcblk0p1"
