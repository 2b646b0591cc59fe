"""Resolution of raw image entries into validated ImageDescriptor records.

Rules are applied in a fixed order and every violation is a
ConfigurationError raised before any device is touched:

    1. ``partition`` and ``offset`` are mutually exclusive
    2. a named partition must exist in the disk layout
    3. ``footer`` must be a size with an optional K/M/G suffix
    4. ``mkfs`` excludes ``filename`` and needs a target partition
    5. without ``mkfs``: ``filename`` and ``type`` are required, explicit
       offsets are for raw images only, and the footer shrinks the working
       size and forces a resize
    6. ``bootloader`` only goes with ``mkfs = vfat``
"""

from __future__ import annotations

from typing import Optional

from image_installer.config.installer import ImageEntry
from image_installer.domain.models import (
    Bootloader,
    DiskLayout,
    ImageDescriptor,
    ImageType,
    InstallFlag,
    MkfsType,
    Partition,
)
from image_installer.logging import LoggerFactory
from image_installer.storage.exceptions import (
    ConfigurationError,
    FooterSizeError,
    PartitionNotFoundError,
)
from image_installer.storage.mkfs import VOLUME_LABEL_MAX


log = LoggerFactory.for_installer(job_id="resolve")

FOOTER_MULTIPLIERS_KB = {"K": 1, "M": 1024, "G": 1024 * 1024}


def parse_footer_size(value: str, image: Optional[str] = None) -> int:
    """Convert a footer size string into kilobytes.

    ``"16K"`` -> 16, ``"2M"`` -> 2048, ``"1G"`` -> 1048576; an unsuffixed
    value is a byte count and is divided down to whole kilobytes.

    Raises:
        FooterSizeError: If the value is empty, negative, or not a number
    """
    if not value:
        raise FooterSizeError(value, image, "empty value")
    suffix = value[-1]
    if suffix in FOOTER_MULTIPLIERS_KB:
        number, multiplier = value[:-1], FOOTER_MULTIPLIERS_KB[suffix]
    elif suffix in "0123456789":
        number, multiplier = value, 0
    else:
        raise FooterSizeError(value, image, f"unsupported suffix '{suffix}'")

    if not (number.isascii() and number.isdigit()):
        raise FooterSizeError(value, image, "not a non-negative integer")
    if multiplier == 0:
        return int(number) // 1024
    return int(number) * multiplier


def parse_flags(value: Optional[str], image: Optional[str] = None) -> set[InstallFlag]:
    flags: set[InstallFlag] = set()
    if value is None:
        return flags
    for token in value.split(","):
        token = token.strip()
        try:
            flags.add(InstallFlag(token))
        except ValueError as error:
            raise ConfigurationError(f"Unknown flag '{token}'", image) from error
    return flags


def parse_offset(value: str, image: Optional[str] = None) -> int:
    """Parse an offset in decimal, hex (``0x``) or octal (leading ``0``)."""
    text = value.strip()
    base = 8 if len(text) > 1 and text[0] == "0" and text[1].isdigit() else 0
    try:
        offset = int(text, base)
    except ValueError as error:
        raise ConfigurationError(f"Invalid offset '{value}'", image) from error
    if offset < 0:
        raise ConfigurationError(f"Offset cannot be negative: {value}", image)
    return offset


def _parse_enum(enum_cls, value: str, what: str, image: str):
    try:
        return enum_cls(value)
    except ValueError as error:
        raise ConfigurationError(f"Unknown {what} '{value}'", image) from error


def resolve_image(entry: ImageEntry, layout: DiskLayout) -> ImageDescriptor:
    """Validate one image entry against ``layout``.

    Raises:
        ConfigurationError: If the entry is inconsistent or incomplete
    """
    name = entry.name
    filename = entry.lookup_string("filename")
    label_name = entry.lookup_string("partition") or filename or name

    offset: Optional[int] = None
    raw_offset = entry.lookup_string("offset")
    if raw_offset is not None:
        offset = parse_offset(raw_offset, name)

    partition: Optional[Partition] = None
    device_path = layout.device
    part_size_kb = 0
    partition_name = entry.lookup_string("partition")
    if partition_name is not None:
        if offset is not None:
            raise ConfigurationError(
                "Cannot specify the partition name AND an offset", name
            )
        partition = layout.find_partition(partition_name)
        if partition is None:
            raise PartitionNotFoundError(partition_name, name)
        partition_device = layout.find_partition_device(partition.name)
        if not partition_device:
            raise ConfigurationError(
                f"Could not get the device name for partition {partition.name}", name
            )
        device_path = partition_device
        offset = layout.offset_bytes(partition)
        part_size_kb = partition.len_kb

    footer_size_kb = 0
    raw_footer = entry.lookup_string("footer")
    if raw_footer is not None:
        footer_size_kb = parse_footer_size(raw_footer, label_name)

    bootloader: Optional[Bootloader] = None
    raw_bootloader = entry.lookup_string("bootloader")
    if raw_bootloader is not None:
        bootloader = _parse_enum(Bootloader, raw_bootloader, "bootloader type", name)

    raw_mkfs = entry.lookup_string("mkfs")
    if raw_mkfs is not None:
        if filename is not None:
            raise ConfigurationError("Providing filename and mkfs parameters is meaningless", name)
        if partition is None:
            raise ConfigurationError("Target partition required for mkfs", name)
        mkfs = _parse_enum(MkfsType, raw_mkfs, "filesystem type for mkfs", name)
        if bootloader is not None and mkfs != MkfsType.VFAT:
            raise ConfigurationError(
                f"{bootloader.value.upper()} cannot work with non-FAT filesystem", name
            )

        reserved_bytes = 0
        if mkfs == MkfsType.EXT4 and footer_size_kb > 0:
            reserved_bytes = -footer_size_kb * 1024
            footer_size_kb = 0

        return ImageDescriptor(
            name=name,
            device_path=device_path,
            offset=offset,
            partition=partition,
            part_size_kb=part_size_kb,
            footer_size_kb=footer_size_kb,
            mkfs=mkfs,
            volume_label=partition.name[:VOLUME_LABEL_MAX],
            reserved_bytes=reserved_bytes,
            bootloader=bootloader,
        )

    if bootloader is not None:
        raise ConfigurationError("A bootloader can only be installed with mkfs = vfat", name)

    if filename is None:
        raise ConfigurationError("Filename is required", name)

    flags = parse_flags(entry.lookup_string("flags"), name)

    if footer_size_kb > 0 and part_size_kb > footer_size_kb:
        part_size_kb -= footer_size_kb
        flags.add(InstallFlag.RESIZE)
        log.info(
            "[{}] Using footer of size {}KB. Original size: {}KB, new size: {}KB",
            label_name,
            footer_size_kb,
            part_size_kb + footer_size_kb,
            part_size_kb,
        )
        footer_size_kb = 0

    raw_type = entry.lookup_string("type")
    if raw_type is None:
        raise ConfigurationError("Type is required", name)
    image_type = _parse_enum(ImageType, raw_type, "image type", name)

    if offset is None:
        raise ConfigurationError("Offset to write into the disk is unknown", name)
    if partition is None and image_type != ImageType.RAW:
        raise ConfigurationError(
            "Only raw images can specify direct offset on the disk. "
            "Please specify the target partition name instead.",
            name,
        )

    if image_type == ImageType.EXT3 and InstallFlag.ADD_JOURNAL in flags:
        log.warning("[{}] addjournal flag is meaningless for ext3 images", name)
        flags.discard(InstallFlag.ADD_JOURNAL)

    return ImageDescriptor(
        name=name,
        device_path=device_path,
        offset=offset,
        filename=filename,
        partition=partition,
        part_size_kb=part_size_kb,
        footer_size_kb=footer_size_kb,
        flags=frozenset(flags),
        image_type=image_type,
    )
