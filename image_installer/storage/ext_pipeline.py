"""Provisioning pipeline for ext2/ext3/ext4 images.

Order of operations:
    1. Write the image (sparse expansion or raw copy)
    2. Forced e2fsck
    3. Reset the mount counter so the first boot does not force a check
    4. Optional resize to the working partition size, then re-check
    5. Optional journal add, then re-check

Every tool failure aborts the pipeline; only the FAT checker retries.
"""

from __future__ import annotations

from pathlib import Path
from typing import AbstractSet, Optional, Union

from image_installer.config.settings import InstallerSettings
from image_installer.domain.models import ExtVariant, InstallFlag
from image_installer.logging import LoggerFactory

from .fsck import FilesystemChecker
from .sparse import SparseImageWriter


log = LoggerFactory.for_storage()


class ExtPipeline:
    def __init__(
        self,
        runner,
        settings: InstallerSettings,
        checker: Optional[FilesystemChecker] = None,
        writer: Optional[SparseImageWriter] = None,
    ):
        self.runner = runner
        self.settings = settings
        self.checker = checker or FilesystemChecker(runner, settings)
        self.writer = writer or SparseImageWriter(runner, settings)

    def reset_mount_count(self, device: str) -> None:
        self.runner.run_checked(self.settings.tune2fs_bin, "-C", "1", device)

    def resize(self, device: str, size_kb: int = 0) -> None:
        """Resize to ``size_kb``, or to the whole partition when it is 0."""
        args = ["-F", device]
        if size_kb:
            args.append(f"{size_kb}K")
        log.info("Resizing filesystem on {} to {}", device, f"{size_kb}K" if size_kb else "partition size")
        self.runner.run_checked(self.settings.resize2fs_bin, *args)
        self.runner.sync()
        self.checker.check_ext(device, force=False)

    def add_journal(self, device: str) -> None:
        log.info("Adding journal to filesystem on {}", device)
        self.runner.run_checked(self.settings.tune2fs_bin, "-j", device)
        self.runner.sync()
        self.checker.check_ext(device, force=False)

    def provision(
        self,
        target_device: str,
        source: Optional[Union[str, Path]],
        flags: AbstractSet[InstallFlag] = frozenset(),
        part_size_kb: int = 0,
        variant: ExtVariant = ExtVariant(),
        test_mode: bool = False,
    ) -> None:
        """Write ``source`` to ``target_device`` and apply the requested flags.

        Raises:
            ToolInvocationError: If a tool could not be launched
            ToolFailureError: If a tool reported failure
            IntegrityError: If a filesystem check fails
            ResourceError: If the image cannot be read or written
        """
        if source is not None:
            self.writer.write(source, target_device, test_mode)
            if test_mode:
                return

        self.checker.check_ext(target_device, force=True)
        self.reset_mount_count(target_device)

        if InstallFlag.RESIZE in flags:
            self.resize(target_device, part_size_kb)

        if InstallFlag.ADD_JOURNAL in flags:
            if variant.journal:
                log.warning("Filesystem on {} is already journaled, not adding a journal", target_device)
            else:
                self.add_journal(target_device)
