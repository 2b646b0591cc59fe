"""SYSLINUX boot loader installation onto a FAT partition.

The loader binary is installed onto the partition device, the partition is
mounted, the syslinux support files are copied over, and the boot menu is
generated from a template plus the partition numbers of the Android
``misc``, ``boot``, ``recovery`` and (optional) ``droidboot`` partitions.
"""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from image_installer.config.settings import InstallerSettings
from image_installer.domain.models import DiskLayout
from image_installer.logging import LoggerFactory

from .exceptions import ConfigurationError, ResourceError
from .mount import mounted


log = LoggerFactory.for_bootloader()

REQUIRED_ROLES = ("misc", "boot", "recovery")
MENU_MODULE = "android.c32"


@dataclass(frozen=True)
class BootPartitionNumbers:
    misc: int
    boot: int
    recovery: int
    droidboot: Optional[int] = None


def find_partition_number(layout: DiskLayout, name: str) -> Optional[int]:
    device_path = layout.find_partition_device(name)
    if device_path is None:
        return None
    return layout.partition_number_from_path(device_path)


def resolve_boot_partitions(layout: DiskLayout) -> BootPartitionNumbers:
    """Look up the partition numbers the boot menu refers to.

    Raises:
        ConfigurationError: If misc, boot or recovery is missing
    """
    numbers = {}
    for role in REQUIRED_ROLES:
        number = find_partition_number(layout, role)
        if number is None:
            log.error("Error finding the '{}' partition in partition table", role)
            raise ConfigurationError(f"Error finding the '{role}' partition in partition table")
        numbers[role] = number

    droidboot = find_partition_number(layout, "droidboot")
    if droidboot is None:
        log.warning(
            "Partition 'droidboot' is not in partition table. "
            "There will be no droidboot on device."
        )
    return BootPartitionNumbers(droidboot=droidboot, **numbers)


def _menu_entry(label: str, title: str, number: int) -> str:
    return (
        f"label {label}\n"
        f"\tmenu label {title}\n"
        f"\tcom32 {MENU_MODULE}\n"
        f"\tappend current {number}\n\n"
    )


def render_boot_menu(numbers: BootPartitionNumbers) -> str:
    """Menu text appended after the syslinux.cfg template."""
    text = f"menu androidcommand {numbers.misc}\n\n"
    text += _menu_entry("boot", "^Boot Android system", numbers.boot)
    text += _menu_entry("recovery", "^OS Recovery mode", numbers.recovery)
    if numbers.droidboot is not None:
        text += _menu_entry("fastboot", "^Fastboot mode", numbers.droidboot)
    return text


def copy_support_files(source_dir: Path, target_dir: Path) -> list[str]:
    """Copy every regular file of ``source_dir`` into ``target_dir``.

    Raises:
        ResourceError: If a file cannot be read or written
    """
    copied = []
    try:
        entries = sorted(source_dir.iterdir())
    except OSError as error:
        raise ResourceError(f"Error reading '{source_dir}': {error}", path=str(source_dir)) from error

    for entry in entries:
        if entry.is_symlink() or not entry.is_file():
            continue
        destination = target_dir / entry.name
        try:
            shutil.copyfile(entry, destination)
        except OSError as error:
            log.error("Error copying '{}' to '{}': {}", entry, destination, error)
            raise ResourceError(
                f"Error copying '{entry}' to '{destination}': {error}", path=str(destination)
            ) from error
        copied.append(entry.name)
    log.debug("Copied {} syslinux files to {}", len(copied), target_dir)
    return copied


def write_boot_menu(template: Path, destination: Path, numbers: BootPartitionNumbers) -> None:
    try:
        data = template.read_bytes()
    except OSError as error:
        log.error("Error reading '{}': {}", template, error)
        raise ResourceError(f"Error reading '{template}': {error}", path=str(template)) from error
    try:
        with open(destination, "wb") as f:
            f.write(data)
            f.write(render_boot_menu(numbers).encode("utf-8"))
    except OSError as error:
        log.error("Error writing to file '{}' ({})", destination, error)
        raise ResourceError(
            f"Error writing to file '{destination}': {error}", path=str(destination)
        ) from error


class SyslinuxInstaller:
    def __init__(self, runner, settings: InstallerSettings):
        self.runner = runner
        self.settings = settings

    def check_prerequisites(self) -> None:
        template = self.settings.syslinux_template
        if not os.access(template, os.R_OK):
            log.error("Error: {} has no read access or does not exist", template)
            raise ResourceError(
                f"{template} has no read access or does not exist", path=str(template)
            )
        binary = self.settings.syslinux_bin
        if not os.access(binary, os.R_OK | os.X_OK):
            log.error("Error: {} has no read/execution access or does not exist", binary)
            raise ResourceError(
                f"{binary} has no read/execution access or does not exist", path=binary
            )

    def install(self, device: str, layout: DiskLayout, test_mode: bool = False) -> None:
        """Install SYSLINUX onto the FAT partition ``device``.

        The partition is always unmounted again once it has been mounted,
        whether or not the later steps succeed.

        Raises:
            ResourceError: If support files are missing or cannot be copied
            ConfigurationError: If a required partition is missing
            ToolFailureError: If the syslinux installer fails
            MountError: If the partition cannot be mounted or unmounted
        """
        if test_mode:
            log.warning("SYSLINUX bootloader is not installed due to test mode.")
            return

        self.check_prerequisites()
        numbers = resolve_boot_partitions(layout)

        self.runner.run_checked(self.settings.syslinux_bin, "--install", device)

        mountpoint = self.settings.bootloader_mount_point
        with mounted(self.runner, self.settings, device, mountpoint, "vfat") as target:
            copy_support_files(Path(self.settings.syslinux_files_dir), target)
            write_boot_menu(
                self.settings.syslinux_template,
                target / self.settings.syslinux_config.name,
                numbers,
            )
            self.runner.sync()
        log.info("SYSLINUX installed on {}", device)
