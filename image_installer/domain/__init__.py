"""Domain models for image installation.

Type-safe records that describe the disk layout and the normalized per-image
instructions consumed by the storage pipelines.
"""

from __future__ import annotations

from .models import (
    Bootloader,
    DiskLayout,
    ExtVariant,
    ImageDescriptor,
    ImageType,
    InstallFlag,
    MkfsType,
    Partition,
    PartitionScheme,
)


__all__ = [
    "Bootloader",
    "DiskLayout",
    "ExtVariant",
    "ImageDescriptor",
    "ImageType",
    "InstallFlag",
    "MkfsType",
    "Partition",
    "PartitionScheme",
]
