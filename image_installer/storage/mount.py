"""Mount helpers for the bootloader target and the data device.

Device paths are validated before they reach the mount tool: they must live
under /dev/ and must not carry shell metacharacters.
"""

from __future__ import annotations

import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from image_installer.config.settings import InstallerSettings
from image_installer.logging import LoggerFactory

from .exceptions import MountError


log = LoggerFactory.for_system()

INVALID_PATH_CHARS = (";", "&", "|", "$", "`", "\n", "\r", " ")


def validate_device_path(device: str) -> None:
    """Reject device paths that are not plain /dev/ nodes.

    Raises:
        ValueError: If the path is invalid
    """
    if not isinstance(device, str) or not device.startswith("/dev/"):
        raise ValueError(f"Invalid device path: {device}")
    if any(char in device for char in INVALID_PATH_CHARS):
        raise ValueError(f"Device path contains invalid characters: {device}")


def mount_filesystem(
    runner,
    settings: InstallerSettings,
    device: str,
    mountpoint: str,
    fstype: str,
    read_only: bool = False,
) -> None:
    """Mount ``device`` on ``mountpoint`` as ``fstype``.

    Raises:
        MountError: If the device path is invalid, the mount point cannot be
            created, or mount fails
    """
    try:
        validate_device_path(device)
    except ValueError as error:
        log.error("Refusing to mount {}: {}", device, error)
        raise MountError(device, mountpoint, str(error)) from error
    try:
        Path(mountpoint).mkdir(parents=True, exist_ok=True)
    except OSError as error:
        raise MountError(device, mountpoint, str(error)) from error

    args = ["-t", fstype]
    if read_only:
        args.extend(["-o", "ro"])
    returncode = runner.run(settings.mount_bin, *args, device, mountpoint)
    if returncode != 0:
        log.error("Could not mount {} on {} as {}", device, mountpoint, fstype)
        raise MountError(device, mountpoint, f"mount exited with {returncode}")
    log.info("Mounted {} on {} ({})", device, mountpoint, fstype)


def unmount_filesystem(runner, settings: InstallerSettings, mountpoint: str) -> None:
    """Unmount ``mountpoint``.

    Raises:
        MountError: If umount fails
    """
    returncode = runner.run(settings.umount_bin, mountpoint)
    if returncode != 0:
        log.error("Could not unmount {}", mountpoint)
        raise MountError(
            mountpoint, mountpoint, f"umount exited with {returncode}", action="unmount"
        )
    log.info("Unmounted {}", mountpoint)


@contextmanager
def mounted(
    runner,
    settings: InstallerSettings,
    device: str,
    mountpoint: str,
    fstype: str,
) -> Iterator[Path]:
    """Mount for the duration of the block and always unmount on exit.

    An unmount failure after an error inside the block is logged and the
    original error propagates.
    """
    mount_filesystem(runner, settings, device, mountpoint, fstype)
    try:
        yield Path(mountpoint)
    except BaseException:
        try:
            unmount_filesystem(runner, settings, mountpoint)
        except MountError as error:
            log.error("Cleanup unmount of {} failed: {}", mountpoint, error)
        raise
    unmount_filesystem(runner, settings, mountpoint)


def wait_for_device(device: str, poll_interval: float = 1.0) -> None:
    """Block until ``device`` exists. There is no timeout."""
    log.info("Waiting for device: {}", device)
    while not os.path.exists(device):
        time.sleep(poll_interval)
    log.info("Device {} ready", device)
