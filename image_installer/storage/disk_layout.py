"""Application of a DiskLayout to the target block device.

The layout is rendered as an sfdisk script and fed to ``sfdisk --force``.
MBR layouts with more than four partitions get an extended partition in the
fourth slot holding the remaining entries as logical partitions.
"""

from __future__ import annotations

import os

from image_installer.config.installer import EBR_GAP_LBA
from image_installer.config.settings import InstallerSettings
from image_installer.domain.models import (
    MBR_PRIMARY_SLOTS,
    DiskLayout,
    Partition,
    PartitionScheme,
)
from image_installer.logging import LoggerFactory

from .exceptions import ResourceError


log = LoggerFactory.for_system()

MBR_TYPES = {
    "linux": "83",
    "swap": "82",
    "fat16": "e",
    "fat32": "c",
    "vfat": "c",
    "efi": "ef",
}

GPT_TYPES = {
    "linux": "0FC63DAF-8483-4772-8E79-3D69D8477DE4",
    "swap": "0657FD6D-A4AB-43C4-84E5-0933C84B4F4F",
    "fat16": "EBD0A0A2-B9E5-4433-87C0-68B6B72699C7",
    "fat32": "EBD0A0A2-B9E5-4433-87C0-68B6B72699C7",
    "vfat": "EBD0A0A2-B9E5-4433-87C0-68B6B72699C7",
    "efi": "C12A7328-F81F-11D2-BA4B-00A0C93EC93B",
}

MBR_EXTENDED_TYPE = "5"
ZERO_CHUNK_SIZE = 1024 * 1024


def _partition_type(layout: DiskLayout, partition: Partition) -> str:
    types = GPT_TYPES if layout.scheme == PartitionScheme.GPT else MBR_TYPES
    return types.get(partition.fs_type.lower(), partition.fs_type)


def _partition_line(layout: DiskLayout, partition: Partition) -> str:
    fields = [
        f"start={partition.start_lba}",
        f"size={partition.len_lba(layout.sector_size)}",
        f"type={_partition_type(layout, partition)}",
    ]
    if layout.scheme == PartitionScheme.GPT:
        fields.append(f'name="{partition.name}"')
    elif partition.active:
        fields.append("bootable")
    return f"{layout.partition_prefix}{layout.partition_number(partition)} : " + ", ".join(fields)


def build_sfdisk_script(layout: DiskLayout) -> str:
    label = "gpt" if layout.scheme == PartitionScheme.GPT else "dos"
    lines = [f"label: {label}", "unit: sectors"]
    if layout.sector_size != 512:
        lines.append(f"sector-size: {layout.sector_size}")
    lines.append("")

    if not layout.uses_extended_partition:
        lines.extend(_partition_line(layout, partition) for partition in layout.partitions)
        return "\n".join(lines) + "\n"

    primaries = layout.partitions[: MBR_PRIMARY_SLOTS - 1]
    logicals = layout.partitions[MBR_PRIMARY_SLOTS - 1 :]
    lines.extend(_partition_line(layout, partition) for partition in primaries)

    extended_start = logicals[0].start_lba - EBR_GAP_LBA
    last = logicals[-1]
    extended_end = last.start_lba + last.len_lba(layout.sector_size)
    lines.append(
        f"{layout.partition_prefix}{MBR_PRIMARY_SLOTS} : "
        f"start={extended_start}, size={extended_end - extended_start}, type={MBR_EXTENDED_TYPE}"
    )
    lines.extend(_partition_line(layout, partition) for partition in logicals)
    return "\n".join(lines) + "\n"


def describe_layout(layout: DiskLayout) -> list[str]:
    lines = [
        f"Device: {layout.device}",
        f"Scheme: {layout.scheme.value}",
        f"Sector size: {layout.sector_size}",
        f"Skip leading sectors: {layout.skip_lba}",
        f"Total sectors: {layout.num_lba or 'unknown'}",
        f"Partitions: {len(layout.partitions)}",
    ]
    for partition in layout.partitions:
        lines.append(
            f"  {layout.device_path_for(partition)}: name={partition.name} "
            f"start_lba={partition.start_lba} len_kb={partition.len_kb} "
            f"type={partition.fs_type}{' active' if partition.active else ''}"
        )
    return lines


class DiskLayoutApplier:
    def __init__(self, runner, settings: InstallerSettings):
        self.runner = runner
        self.settings = settings

    def clear_leading_sectors(self, layout: DiskLayout, test_mode: bool = False) -> int:
        """Zero the space between the first sector and the first partition.

        Wipes any stale partition table header left in that area.

        Returns:
            Number of bytes zeroed
        """
        count = max(layout.skip_lba - 1, 0) * layout.sector_size
        if not count:
            return 0
        if test_mode:
            log.info("Test mode: not zeroing {} bytes before first partition", count)
            return count

        remaining = count
        try:
            with open(layout.device, "r+b") as device:
                device.seek(layout.sector_size)
                while remaining:
                    chunk = min(remaining, ZERO_CHUNK_SIZE)
                    device.write(b"\0" * chunk)
                    remaining -= chunk
                device.flush()
                os.fsync(device.fileno())
        except OSError as error:
            log.error("Failed to zero out space before first partition: {}", error)
            raise ResourceError(
                f"Failed to zero out space before first partition on {layout.device}: {error}",
                path=layout.device,
            ) from error
        log.debug("Zeroed {} bytes before first partition on {}", count, layout.device)
        return count

    def apply(self, layout: DiskLayout, test_mode: bool = False) -> None:
        """Write the partition table described by ``layout``.

        Raises:
            ToolFailureError: If sfdisk fails
        """
        script = build_sfdisk_script(layout)
        if test_mode:
            log.info("Test mode: not writing partition table to {}", layout.device)
            log.debug("sfdisk script:\n{}", script)
            return

        log.info("Writing {} partition table to {}", layout.scheme.value, layout.device)
        self.runner.run_checked(
            self.settings.sfdisk_bin, "--force", layout.device, input_text=script
        )
        self.runner.sync()

    def dump(self, layout: DiskLayout) -> None:
        for line in describe_layout(layout):
            log.info(line)
