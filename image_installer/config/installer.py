"""Loading of the installer image list and the disk layout description.

Both files are JSON documents. The image list is kept as loosely typed
string fields here; validation happens in the descriptor resolver.

Installer config::

    {"images": [
        {"name": "boot", "partition": "boot", "mkfs": "vfat", "bootloader": "syslinux"},
        {"name": "system", "partition": "system", "filename": "/data/system.img",
         "type": "ext4", "flags": "resize", "footer": "16K"}
    ]}

The ``images`` section may also be an object mapping entry names to fields;
file order is preserved either way.

Disk layout::

    {"device": "/dev/sda", "scheme": "mbr", "skip_lba": 2048,
     "partitions": [{"name": "boot", "len_kb": 32768, "type": "fat32", "active": true},
                    {"name": "data", "len_kb": -1}],
     "num_lba": 15523840}
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

from image_installer.domain.models import DiskLayout, Partition, PartitionScheme
from image_installer.logging import LoggerFactory
from image_installer.storage.exceptions import ConfigurationError


log = LoggerFactory.for_system()

# Sector left free in front of each logical partition for its EBR
EBR_GAP_LBA = 1
FILL_REMAINING = -1


@dataclass(frozen=True)
class ImageEntry:
    """One raw entry of the ``images`` section."""

    name: str
    values: Mapping[str, Any] = field(default_factory=dict)

    def lookup_string(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self.values.get(key)
        if value is None:
            return default
        return str(value)


def _read_json(path: Path, what: str) -> Any:
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as error:
        raise ConfigurationError(f"Could not read {what} {path}: {error}") from error
    except json.JSONDecodeError as error:
        raise ConfigurationError(f"Invalid {what} {path}: {error}") from error


def parse_image_entries(data: Any, source: str = "<config>") -> list[ImageEntry]:
    """Convert the parsed installer document into ordered image entries."""
    if not isinstance(data, dict) or "images" not in data:
        raise ConfigurationError(
            f"Invalid configuration file {source}. Missing 'images' section"
        )
    images = data["images"]
    entries: list[ImageEntry] = []
    if isinstance(images, dict):
        for name, values in images.items():
            if not isinstance(values, dict):
                raise ConfigurationError(f"Image entry {name!r} must be an object")
            entries.append(ImageEntry(name=str(name), values=dict(values)))
    elif isinstance(images, list):
        for position, values in enumerate(images):
            if not isinstance(values, dict):
                raise ConfigurationError(f"Image entry #{position} must be an object")
            name = str(values.get("name") or f"image{position}")
            fields_ = {key: value for key, value in values.items() if key != "name"}
            entries.append(ImageEntry(name=name, values=fields_))
    else:
        raise ConfigurationError(f"'images' section of {source} must be a list or object")
    return entries


def load_installer_config(path: Path) -> list[ImageEntry]:
    data = _read_json(path, "installer config file")
    entries = parse_image_entries(data, source=str(path))
    log.debug("Loaded {} image entries from {}", len(entries), path)
    return entries


def _as_int(value: Any, key: str, default: int = 0) -> int:
    if value is None:
        return default
    try:
        return int(str(value), 0)
    except ValueError as error:
        raise ConfigurationError(f"Disk layout field {key!r} is not a number: {value!r}") from error


def _build_partitions(
    raw_partitions: list[Any],
    scheme: PartitionScheme,
    sector_size: int,
    skip_lba: int,
    num_lba: int,
) -> tuple[Partition, ...]:
    partitions: list[Partition] = []
    seen: set[str] = set()
    extended = scheme == PartitionScheme.MBR and len(raw_partitions) > 4
    cursor = skip_lba

    for index, raw in enumerate(raw_partitions):
        if not isinstance(raw, dict) or not raw.get("name"):
            raise ConfigurationError(f"Partition #{index} must be an object with a name")
        name = str(raw["name"])
        if name in seen:
            raise ConfigurationError(f"Duplicate partition name {name!r} in disk layout")
        seen.add(name)

        start_lba = _as_int(raw.get("start_lba"), "start_lba", default=-1)
        if start_lba < 0:
            start_lba = cursor
            if extended and index >= 3:
                start_lba += EBR_GAP_LBA

        len_kb = _as_int(raw.get("len_kb"), "len_kb", default=0)
        if len_kb == FILL_REMAINING:
            if num_lba <= start_lba:
                raise ConfigurationError(
                    f"Partition {name!r} fills the disk but num_lba is not set"
                )
            len_kb = (num_lba - start_lba) * sector_size // 1024
        if len_kb <= 0:
            raise ConfigurationError(f"Partition {name!r} needs a positive len_kb")

        partition = Partition(
            name=name,
            index=index,
            start_lba=start_lba,
            len_kb=len_kb,
            fs_type=str(raw.get("type", "linux")),
            active=bool(raw.get("active", False)),
        )
        partitions.append(partition)
        cursor = start_lba + partition.len_lba(sector_size)

    if num_lba and cursor > num_lba:
        raise ConfigurationError(
            f"Disk layout needs {cursor} sectors but the disk only has {num_lba}"
        )
    return tuple(partitions)


def parse_disk_layout(data: Any, source: str = "<layout>") -> DiskLayout:
    if not isinstance(data, dict) or not data.get("device"):
        raise ConfigurationError(f"Disk layout {source} must name a target device")
    try:
        scheme = PartitionScheme(str(data.get("scheme", "mbr")).lower())
    except ValueError as error:
        raise ConfigurationError(f"Unknown partition scheme {data.get('scheme')!r}") from error

    sector_size = _as_int(data.get("sector_size"), "sector_size", default=512)
    if sector_size <= 0 or sector_size % 512:
        raise ConfigurationError(f"Unsupported sector size {sector_size}")
    skip_lba = _as_int(data.get("skip_lba"), "skip_lba", default=0)
    num_lba = _as_int(data.get("num_lba"), "num_lba", default=0)

    raw_partitions = data.get("partitions") or []
    if not isinstance(raw_partitions, list):
        raise ConfigurationError("Disk layout 'partitions' must be a list")

    return DiskLayout(
        device=str(data["device"]),
        partitions=_build_partitions(raw_partitions, scheme, sector_size, skip_lba, num_lba),
        sector_size=sector_size,
        skip_lba=skip_lba,
        num_lba=num_lba,
        scheme=scheme,
    )


def load_disk_layout(path: Path) -> DiskLayout:
    data = _read_json(path, "disk layout file")
    layout = parse_disk_layout(data, source=str(path))
    log.debug(
        "Loaded disk layout for {} with {} partitions", layout.device, len(layout.partitions)
    )
    return layout
