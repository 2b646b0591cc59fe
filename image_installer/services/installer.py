"""Installation run: partition the disk, then write every configured image.

Images are processed strictly in configuration order. The first failure
aborts the whole run; the disk is left as the failing step left it and the
installer has to be run again from scratch.

The partition table is written twice: once before any image so the
partitions exist, and once after all images in case one of them (for
example a boot loader) rewrote the table.
"""

from __future__ import annotations

from typing import Iterable, Optional

from image_installer.config.installer import ImageEntry
from image_installer.config.settings import InstallerSettings
from image_installer.domain.models import DiskLayout, ImageDescriptor, ImageType
from image_installer.logging import LoggerFactory, operation_context
from image_installer.storage.bootloader import SyslinuxInstaller
from image_installer.storage.command_runners import ProcessRunner
from image_installer.storage.disk_layout import DiskLayoutApplier
from image_installer.storage.exceptions import InstallerError
from image_installer.storage.ext_pipeline import ExtPipeline
from image_installer.storage.fsck import FilesystemChecker
from image_installer.storage.mkfs import FilesystemFormatter
from image_installer.storage.sparse import SparseImageWriter, write_raw_image

from .descriptors import resolve_image


class Installer:
    def __init__(
        self,
        settings: InstallerSettings,
        layout: DiskLayout,
        runner=None,
        test_mode: bool = False,
    ):
        self.settings = settings
        self.layout = layout
        self.runner = runner or ProcessRunner()
        self.test_mode = test_mode
        self.log = LoggerFactory.for_installer()

        checker = FilesystemChecker(self.runner, settings)
        self.layout_applier = DiskLayoutApplier(self.runner, settings)
        self.formatter = FilesystemFormatter(self.runner, settings, checker)
        self.ext_pipeline = ExtPipeline(
            self.runner, settings, checker, SparseImageWriter(self.runner, settings)
        )
        self.bootloader = SyslinuxInstaller(self.runner, settings)

    def prepare_disk(self) -> None:
        self.layout_applier.clear_leading_sectors(self.layout, self.test_mode)
        self.layout_applier.apply(self.layout, self.test_mode)

    def format_image(self, descriptor: ImageDescriptor) -> None:
        if self.test_mode:
            self.log.info(
                "Test mode: not creating {} on {}", descriptor.mkfs.value, descriptor.device_path
            )
        else:
            self.formatter.format(
                descriptor.device_path,
                descriptor.mkfs,
                descriptor.volume_label,
                descriptor.reserved_bytes,
            )
        if descriptor.bootloader is not None:
            self.bootloader.install(descriptor.device_path, self.layout, self.test_mode)

    def write_image(self, descriptor: ImageDescriptor) -> None:
        if descriptor.image_type == ImageType.RAW:
            write_raw_image(
                self.layout.device, descriptor.filename, descriptor.offset, self.test_mode
            )
            return
        self.ext_pipeline.provision(
            descriptor.device_path,
            descriptor.filename,
            descriptor.flags,
            descriptor.part_size_kb,
            descriptor.image_type.ext_variant,
            self.test_mode,
        )

    def process_image(self, entry: ImageEntry) -> ImageDescriptor:
        with operation_context("image", image=entry.name) as log:
            descriptor = resolve_image(entry, self.layout)
            log.debug("Resolved {}: {}", entry.name, descriptor)
            if descriptor.is_mkfs:
                self.format_image(descriptor)
            else:
                self.write_image(descriptor)
        return descriptor

    def process_images(self, entries: Iterable[ImageEntry]) -> int:
        count = 0
        for entry in entries:
            try:
                self.process_image(entry)
            except InstallerError:
                self.log.error(
                    "Unable to write data to partition. Try running the installer again."
                )
                raise
            count += 1
        return count

    def run(self, entries: Iterable[ImageEntry]) -> int:
        """Partition the disk and install ``entries``.

        Returns:
            Number of images installed

        Raises:
            InstallerError: On the first failure
        """
        self.prepare_disk()
        count = self.process_images(entries)
        self.layout_applier.apply(self.layout, self.test_mode)
        self.log.info("Done processing installer config. Configured {} images", count)
        return count


def run_install(
    settings: InstallerSettings,
    layout: DiskLayout,
    entries: Iterable[ImageEntry],
    test_mode: bool = False,
    runner: Optional[ProcessRunner] = None,
) -> int:
    return Installer(settings, layout, runner=runner, test_mode=test_mode).run(entries)
