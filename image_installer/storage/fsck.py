"""Filesystem check drivers for the ext family and FAT.

ext checks run e2fsck once per call; callers re-check after each mutating
step. FAT checks loop while fsck_msdos reports that it modified the
filesystem, up to a fixed number of rechecks.
"""

from __future__ import annotations

import os
from enum import Enum

from image_installer.config.settings import InstallerSettings
from image_installer.logging import LoggerFactory

from .exceptions import (
    FilesystemCheckError,
    NotAFilesystemError,
    RecheckLimitError,
    ToolFailureError,
)


log = LoggerFactory.for_storage().bind(tags=["storage", "fsck"])

# e2fsck exit codes below this value mean "clean" or "errors corrected"
E2FSCK_FAILURE_THRESHOLD = 4

FSCK_MSDOS_OK = 0
FSCK_MSDOS_NOT_FAT = 2
FSCK_MSDOS_MODIFIED = 4
MAX_FAT_RECHECKS = 3


class FatCheckState(Enum):
    CHECKING = "checking"
    DONE = "done"
    FAILED = "failed"


class FilesystemChecker:
    """Runs e2fsck and fsck_msdos against partition devices."""

    def __init__(self, runner, settings: InstallerSettings):
        self.runner = runner
        self.settings = settings

    def check_ext(self, device: str, force: bool = False) -> int:
        """Run e2fsck once and return its exit status.

        Raises:
            FilesystemCheckError: If e2fsck reports uncorrected errors
        """
        opts = "-fy" if force else "-y"
        log.info("Running e2fsck on {} (force={}). This MAY take a while.", device, force)
        returncode = self.runner.run(self.settings.e2fsck_bin, "-C", "0", opts, device)
        if returncode >= E2FSCK_FAILURE_THRESHOLD:
            log.error("Error while running e2fsck: {}", returncode)
            raise FilesystemCheckError(device, returncode)
        self.runner.sync()
        log.info("e2fsck succeeded (exit code: {})", returncode)
        return returncode

    def check_vfat(self, device: str, max_rechecks: int = MAX_FAT_RECHECKS) -> int:
        """Check a FAT filesystem, re-running while the checker modifies it.

        Returns:
            Number of checker runs performed

        Raises:
            NotAFilesystemError: If the device does not hold a FAT filesystem
            RecheckLimitError: If the filesystem is still being modified
                after ``max_rechecks`` rechecks
            ToolFailureError: On any other non-zero exit status
        """
        log.info("Running fsck_msdos on {}. This MAY take a while.", device)
        state = FatCheckState.CHECKING
        attempts = 0
        error: Exception | None = None

        while state == FatCheckState.CHECKING:
            attempts += 1
            returncode = self.runner.run(self.settings.fsck_msdos_bin, "-p", "-f", device)

            if returncode == FSCK_MSDOS_OK:
                log.info("Filesystem check completed OK")
                state = FatCheckState.DONE
            elif returncode == FSCK_MSDOS_NOT_FAT:
                log.error("Filesystem check failed (not a FAT filesystem)")
                error = NotAFilesystemError(device, "FAT")
                state = FatCheckState.FAILED
            elif returncode == FSCK_MSDOS_MODIFIED:
                if attempts <= max_rechecks:
                    log.warning("Filesystem modified - rechecking (pass {})", attempts + 1)
                    continue
                log.error("Failing check after too many rechecks")
                error = RecheckLimitError(device, attempts)
                state = FatCheckState.FAILED
            else:
                log.error("Filesystem check failed (unknown exit code {})", returncode)
                error = ToolFailureError(
                    os.path.basename(self.settings.fsck_msdos_bin), returncode
                )
                state = FatCheckState.FAILED

        if state == FatCheckState.FAILED:
            raise error
        return attempts
