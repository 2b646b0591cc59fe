"""Custom exceptions for installer operations.

This module defines a hierarchy of exceptions for the installer so that each
failure carries a classification the orchestrator and CLI can report.

Exception Hierarchy:
    InstallerError (base)
        ├── ConfigurationError
        │   ├── PartitionNotFoundError
        │   └── FooterSizeError
        ├── ToolError
        │   ├── ToolInvocationError
        │   └── ToolFailureError
        ├── IntegrityError
        │   ├── FilesystemCheckError
        │   ├── NotAFilesystemError
        │   └── RecheckLimitError
        └── ResourceError
            └── MountError

Usage:
    from image_installer.storage.exceptions import ToolFailureError

    if returncode != 0:
        raise ToolFailureError("resize2fs", returncode)
"""

from __future__ import annotations


class InstallerError(Exception):
    """Base exception for all installer operations."""



class ConfigurationError(InstallerError):
    """An image entry or layout is invalid or inconsistent."""

    def __init__(self, message: str, image: str | None = None):
        self.image = image
        if image:
            message = f"[{image}] {message}"
        super().__init__(message)


class PartitionNotFoundError(ConfigurationError):
    """A referenced partition does not exist in the disk layout."""

    def __init__(self, partition_name: str, image: str | None = None):
        self.partition_name = partition_name
        super().__init__(f"Cannot find partition {partition_name}", image=image)


class FooterSizeError(ConfigurationError):
    """A footer size string could not be parsed."""

    def __init__(self, value: str, image: str | None = None, reason: str = ""):
        self.value = value
        self.reason = reason
        msg = f"Invalid footer size: {value!r}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg, image=image)


class ToolError(InstallerError):
    """Base exception for external tool problems."""



class ToolInvocationError(ToolError):
    """External tool could not be launched at all."""

    def __init__(self, command: str, reason: str = ""):
        self.command = command
        self.reason = reason
        msg = f"Could not execute {command}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class ToolFailureError(ToolError):
    """External tool ran but reported failure."""

    def __init__(self, command: str, returncode: int, detail: str = ""):
        self.command = command
        self.returncode = returncode
        self.detail = detail
        msg = f"Error while running {command}: {returncode}"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)


class IntegrityError(InstallerError):
    """Filesystem integrity could not be confirmed."""



class FilesystemCheckError(IntegrityError):
    """e2fsck reported uncorrected errors."""

    def __init__(self, device: str, returncode: int):
        self.device = device
        self.returncode = returncode
        super().__init__(f"Filesystem check of {device} failed with exit code {returncode}")


class NotAFilesystemError(IntegrityError):
    """Checker reported the device does not hold the expected filesystem."""

    def __init__(self, device: str, fstype: str = "FAT"):
        self.device = device
        self.fstype = fstype
        super().__init__(f"Filesystem check of {device} failed (not a {fstype} filesystem)")


class RecheckLimitError(IntegrityError):
    """Checker kept modifying the filesystem past the recheck limit."""

    def __init__(self, device: str, attempts: int):
        self.device = device
        self.attempts = attempts
        super().__init__(
            f"Failing check of {device} after too many rechecks ({attempts} attempts)"
        )


class ResourceError(InstallerError):
    """File, device, or mount access failure."""

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        super().__init__(message)


class MountError(ResourceError):
    """Mounting or unmounting a filesystem failed."""

    def __init__(
        self, device: str, mountpoint: str, reason: str = "", action: str = "mount"
    ):
        self.device = device
        self.mountpoint = mountpoint
        self.reason = reason
        self.action = action
        msg = f"Could not {action} {device} on {mountpoint}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, path=mountpoint)
