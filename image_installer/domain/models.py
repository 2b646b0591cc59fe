"""Domain model for disk layout and image installation.

Type-safe records that replace the loosely typed key/value configuration
once it has been parsed and validated at the boundary.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


# ==============================================================================
# Disk Layout Domain
# ==============================================================================

MBR_PRIMARY_SLOTS = 4


class PartitionScheme(Enum):
    """Partition table format written to the disk."""

    MBR = "mbr"
    GPT = "gpt"


@dataclass(frozen=True)
class Partition:
    """A named region of the target disk."""

    name: str  # e.g., "system"
    index: int  # 0-based position in the layout
    start_lba: int
    len_kb: int
    fs_type: str = "linux"  # e.g., "linux", "fat32"
    active: bool = False  # Bootable flag

    def len_lba(self, sector_size: int) -> int:
        return self.len_kb * 1024 // sector_size


@dataclass(frozen=True)
class DiskLayout:
    """The resolved partition layout of one block device.

    Consumed read-only by the installer: partitions are looked up by name and
    mapped to their device nodes.
    """

    device: str  # e.g., "/dev/sda"
    partitions: tuple[Partition, ...] = ()
    sector_size: int = 512
    skip_lba: int = 0
    num_lba: int = 0
    scheme: PartitionScheme = PartitionScheme.MBR

    @property
    def partition_prefix(self) -> str:
        """Device node prefix shared by all partitions (e.g., /dev/mmcblk0p)."""
        separator = "p" if self.device[-1:].isdigit() else ""
        return f"{self.device}{separator}"

    @property
    def uses_extended_partition(self) -> bool:
        return (
            self.scheme == PartitionScheme.MBR
            and len(self.partitions) > MBR_PRIMARY_SLOTS
        )

    def find_partition(self, name: str) -> Optional[Partition]:
        for partition in self.partitions:
            if partition.name == name:
                return partition
        return None

    def partition_number(self, partition: Partition) -> int:
        """Kernel partition number for a layout entry.

        On MBR disks with more than four partitions the fourth slot holds the
        extended partition, so the remaining entries are logical partitions
        numbered from 5.
        """
        if self.uses_extended_partition and partition.index >= MBR_PRIMARY_SLOTS - 1:
            return partition.index + 2
        return partition.index + 1

    def device_path_for(self, partition: Partition) -> str:
        return f"{self.partition_prefix}{self.partition_number(partition)}"

    def find_partition_device(self, name: str) -> Optional[str]:
        partition = self.find_partition(name)
        if partition is None:
            return None
        return self.device_path_for(partition)

    def partition_number_from_path(self, device_path: str) -> Optional[int]:
        """Recover the partition number from a partition device node."""
        match = re.fullmatch(re.escape(self.partition_prefix) + r"(\d+)", device_path)
        if not match:
            return None
        return int(match.group(1))

    def offset_bytes(self, partition: Partition) -> int:
        return partition.start_lba * self.sector_size


# ==============================================================================
# Image Descriptor Domain
# ==============================================================================


class ImageType(Enum):
    """Payload type of an image written from a file."""

    RAW = "raw"
    EXT2 = "ext2"
    EXT3 = "ext3"
    EXT4 = "ext4"

    @property
    def ext_variant(self) -> Optional[ExtVariant]:
        """Variant record for ext-family images, None for raw payloads."""
        if self == ImageType.RAW:
            return None
        return ExtVariant(journal=self == ImageType.EXT3)


class MkfsType(Enum):
    """Filesystem created from scratch on a partition."""

    EXT2 = "ext2"
    EXT3 = "ext3"
    EXT4 = "ext4"
    VFAT = "vfat"

    @property
    def is_ext(self) -> bool:
        return self != MkfsType.VFAT


class InstallFlag(Enum):
    """Post-write adjustments requested for an ext-family image."""

    RESIZE = "resize"
    ADD_JOURNAL = "addjournal"


class Bootloader(Enum):
    SYSLINUX = "syslinux"


@dataclass(frozen=True)
class ExtVariant:
    """Differences between ext2, ext3 and ext4 that the pipeline cares about."""

    journal: bool = False


@dataclass(frozen=True)
class ImageDescriptor:
    """A validated, normalized instruction for one configured image.

    Either writes an existing image (``filename`` + ``image_type``) or formats
    a fresh filesystem (``mkfs``), never both.
    """

    name: str
    device_path: str  # Partition node, or the whole disk for offset-only images
    offset: int  # Byte offset on the whole disk
    filename: Optional[str] = None
    partition: Optional[Partition] = None
    part_size_kb: int = 0
    footer_size_kb: int = 0
    flags: frozenset[InstallFlag] = field(default_factory=frozenset)
    image_type: Optional[ImageType] = None
    mkfs: Optional[MkfsType] = None
    volume_label: Optional[str] = None
    reserved_bytes: int = 0
    bootloader: Optional[Bootloader] = None

    @property
    def is_mkfs(self) -> bool:
        return self.mkfs is not None
