"""Creation of fresh filesystems on partitions.

Supported Filesystems:
    ext4:   make_ext4fs, optionally reserving a footer at the end of the
            partition (negative length)
    ext2:   mke2fs
    ext3:   mke2fs with a journal
    vfat:   newfs_msdos

Each format is followed by a sync and the matching filesystem check.
"""

from __future__ import annotations

from typing import Optional

from image_installer.config.settings import InstallerSettings
from image_installer.domain.models import MkfsType
from image_installer.logging import LoggerFactory

from .fsck import FilesystemChecker


log = LoggerFactory.for_storage()

# ext2/3/4 labels are limited to 16 characters
VOLUME_LABEL_MAX = 16


def build_mkfs_command(
    settings: InstallerSettings,
    device: str,
    mkfs: MkfsType,
    label: str,
    reserved_bytes: int = 0,
) -> list[str]:
    if mkfs == MkfsType.EXT4:
        command = [settings.make_ext4fs_bin]
        if reserved_bytes:
            command.extend(["-l", str(reserved_bytes)])
        command.extend(["-L", label, device])
    elif mkfs == MkfsType.EXT2:
        command = [settings.mke2fs_bin, "-L", label, device]
    elif mkfs == MkfsType.EXT3:
        command = [settings.mke2fs_bin, "-L", label, "-j", device]
    elif mkfs == MkfsType.VFAT:
        command = [settings.mkdosfs_bin, "-L", label, device]
    else:
        raise ValueError(f"Unsupported filesystem type: {mkfs}")
    return command


class FilesystemFormatter:
    def __init__(
        self,
        runner,
        settings: InstallerSettings,
        checker: Optional[FilesystemChecker] = None,
    ):
        self.runner = runner
        self.settings = settings
        self.checker = checker or FilesystemChecker(runner, settings)

    def format(
        self,
        device: str,
        mkfs: MkfsType,
        label: str,
        reserved_bytes: int = 0,
    ) -> None:
        """Create ``mkfs`` on ``device`` and verify the result.

        Raises:
            ToolFailureError: If the formatter reports failure
            IntegrityError: If the follow-up check fails
        """
        command = build_mkfs_command(self.settings, device, mkfs, label, reserved_bytes)
        if reserved_bytes:
            log.info(
                "[{}] Using footer of {}KB as reserved bytes in make_ext4fs",
                label,
                -reserved_bytes // 1024,
            )
        self.runner.run_checked(*command)
        self.runner.sync()

        if mkfs.is_ext:
            self.checker.check_ext(device, force=False)
        else:
            self.checker.check_vfat(device)
