"""Settings storage for tool paths and fixed mount points."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Optional

from image_installer.logging import LoggerFactory


log = LoggerFactory.for_system()

SETTINGS_PATH = Path(
    os.environ.get(
        "IMAGE_INSTALLER_SETTINGS_PATH",
        Path.home() / ".config" / "image-installer" / "settings.json",
    )
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_INSTALLER_CONF = "/system/etc/installer.conf"
DEFAULT_DISK_LAYOUT_CONF = "/system/etc/disk_layout.conf"
DEFAULT_BOOTLOADER_MOUNT_POINT = "/bootloader"
DEFAULT_SYSLINUX_FILES_DIR = "/data/syslinux"
SYSLINUX_CONFIG_NAME = "syslinux.cfg"


@dataclass(frozen=True)
class InstallerSettings:
    """Fixed paths used by the installer components.

    Passed into every component at construction so tests can point them at
    fake binaries and temporary mount points.
    """

    mke2fs_bin: str = "/system/bin/mke2fs"
    make_ext4fs_bin: str = "/system/bin/make_ext4fs"
    e2fsck_bin: str = "/system/bin/e2fsck"
    tune2fs_bin: str = "/system/bin/tune2fs"
    resize2fs_bin: str = "/system/bin/resize2fs"
    simg2img_bin: str = "/system/bin/simg2img"
    mkdosfs_bin: str = "/system/bin/newfs_msdos"
    fsck_msdos_bin: str = "/system/bin/fsck_msdos"
    syslinux_bin: str = "/system/bin/syslinux"
    sfdisk_bin: str = "sfdisk"
    mount_bin: str = "mount"
    umount_bin: str = "umount"
    bootloader_mount_point: str = DEFAULT_BOOTLOADER_MOUNT_POINT
    syslinux_files_dir: str = DEFAULT_SYSLINUX_FILES_DIR
    installer_conf: str = DEFAULT_INSTALLER_CONF
    disk_layout_conf: str = DEFAULT_DISK_LAYOUT_CONF
    data_dir: str = "/data"
    data_fstype: str = "ext4"

    @property
    def syslinux_template(self) -> Path:
        return Path(self.syslinux_files_dir) / SYSLINUX_CONFIG_NAME

    @property
    def syslinux_config(self) -> Path:
        return Path(self.bootloader_mount_point) / SYSLINUX_CONFIG_NAME

    def with_overrides(self, values: dict[str, Any]) -> InstallerSettings:
        known = {item.name for item in fields(self)}
        overrides = {}
        for key, value in values.items():
            if key not in known:
                log.warning("Ignoring unknown setting {!r}", key)
                continue
            overrides[key] = str(value)
        return replace(self, **overrides)


DEFAULT_SETTINGS = InstallerSettings()


def load_settings(path: Optional[Path] = None) -> InstallerSettings:
    """Load settings, overlaying the JSON file at ``path`` on the defaults."""
    path = path or SETTINGS_PATH
    if not path.exists():
        return DEFAULT_SETTINGS
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as error:
        log.warning("Could not read settings file {}: {}", path, error)
        return DEFAULT_SETTINGS
    if not isinstance(data, dict):
        log.warning("Settings file {} does not hold an object, using defaults", path)
        return DEFAULT_SETTINGS
    return DEFAULT_SETTINGS.with_overrides(data)
