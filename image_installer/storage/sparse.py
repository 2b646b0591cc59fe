"""Android sparse image detection and raw image writing.

A sparse image starts with a 28-byte little-endian header whose first word is
SPARSE_HEADER_MAGIC. Sparse images are expanded onto the target with
simg2img; anything else is copied byte for byte at a given offset.
"""

from __future__ import annotations

import os
import shutil
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from image_installer.config.settings import InstallerSettings
from image_installer.logging import LoggerFactory

from .exceptions import ResourceError


log = LoggerFactory.for_storage()

SPARSE_HEADER_MAGIC = 0xED26FF3A
# magic, major, minor, file_hdr_sz, chunk_hdr_sz, blk_sz, total_blks, total_chunks, checksum
SPARSE_HEADER_FORMAT = "<IHHHHIIII"
SPARSE_HEADER_SIZE = struct.calcsize(SPARSE_HEADER_FORMAT)

COPY_CHUNK_SIZE = 4 * 1024 * 1024

PathLike = Union[str, Path]


@dataclass(frozen=True)
class SparseHeader:
    magic: int
    major_version: int
    minor_version: int
    file_header_size: int
    chunk_header_size: int
    block_size: int
    total_blocks: int
    total_chunks: int
    image_checksum: int

    @property
    def expanded_size(self) -> int:
        return self.block_size * self.total_blocks


def read_sparse_header(source: PathLike) -> Optional[SparseHeader]:
    """Read the sparse header of ``source``.

    Returns:
        The header when the file starts with the sparse magic, None for any
        other content, including files shorter than the header

    Raises:
        ResourceError: If the file cannot be opened
    """
    try:
        with open(source, "rb") as f:
            data = f.read(SPARSE_HEADER_SIZE)
    except OSError as error:
        log.error("Cannot open '{}' for read: {}", source, error)
        raise ResourceError(f"Cannot open '{source}' for read: {error}", path=str(source)) from error

    if len(data) < SPARSE_HEADER_SIZE:
        return None
    header = SparseHeader(*struct.unpack(SPARSE_HEADER_FORMAT, data))
    if header.magic != SPARSE_HEADER_MAGIC:
        return None
    return header


def write_raw_image(
    destination: PathLike, source: PathLike, offset: int, test_mode: bool = False
) -> int:
    """Copy ``source`` byte for byte into ``destination`` starting at ``offset``.

    In test mode the source is opened and measured but nothing is written.

    Returns:
        Number of bytes written (or that would have been written)

    Raises:
        ResourceError: If either file cannot be opened, seeked, or written
    """
    log.info(
        "Writing RAW image '{}' to '{}' (offset={})", source, destination, offset
    )
    try:
        size = os.path.getsize(source)
    except OSError as error:
        raise ResourceError(f"Cannot stat '{source}': {error}", path=str(source)) from error

    if test_mode:
        log.info("Test mode: not writing {} bytes to '{}'", size, destination)
        return size

    try:
        with open(source, "rb") as src, open(destination, "r+b") as dst:
            dst.seek(offset)
            shutil.copyfileobj(src, dst, COPY_CHUNK_SIZE)
            dst.flush()
            os.fsync(dst.fileno())
    except OSError as error:
        log.error("Error writing '{}' to '{}': {}", source, destination, error)
        raise ResourceError(
            f"Error writing '{source}' to '{destination}': {error}", path=str(destination)
        ) from error

    log.info("Wrote {} bytes to '{}'", size, destination)
    return size


class SparseImageWriter:
    """Writes an image file to a device, expanding sparse images on the way."""

    def __init__(self, runner, settings: InstallerSettings):
        self.runner = runner
        self.settings = settings

    def expand(self, source: PathLike, destination: str) -> None:
        """Expand a sparse image onto ``destination`` with simg2img."""
        self.runner.run_checked(self.settings.simg2img_bin, str(source), destination)

    def write(self, source: PathLike, destination: str, test_mode: bool = False) -> bool:
        """Write ``source`` to the start of ``destination``.

        Returns:
            True if the image was sparse and went through the expander
        """
        header = read_sparse_header(source)
        if header is None:
            write_raw_image(destination, source, 0, test_mode)
            return False

        log.info(
            "'{}' is a sparse image ({} bytes expanded)",
            source,
            header.expanded_size,
        )
        if test_mode:
            log.info("Test mode: not expanding '{}' onto '{}'", source, destination)
            return True
        self.expand(source, destination)
        return True
