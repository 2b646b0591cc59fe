"""
Pytest configuration and shared fixtures for image-installer tests.

This module provides a scripted stand-in for the external tool runner,
settings rooted in a temporary directory, and sample disk layouts.
"""

import os
import struct
from pathlib import Path
from typing import Dict, List, Optional, Union

import pytest

from image_installer.config.installer import parse_disk_layout
from image_installer.config.settings import InstallerSettings
from image_installer.domain.models import DiskLayout
from image_installer.storage.command_runners import ProcessRunner
from image_installer.storage.sparse import SPARSE_HEADER_FORMAT, SPARSE_HEADER_MAGIC


# ==============================================================================
# Tool Runner Fixtures
# ==============================================================================


class FakeRunner(ProcessRunner):
    """Records tool invocations and replays scripted exit codes.

    Only the process launch is replaced; exit status handling such as
    ``run_checked`` is inherited unchanged.

    ``returncodes`` maps a tool basename to either a fixed exit code or a list
    of exit codes consumed one per call (0 once the list runs out).
    """

    def __init__(self, returncodes: Optional[Dict[str, Union[int, List[int]]]] = None):
        self.returncodes = dict(returncodes or {})
        self.calls: List[List[str]] = []
        self.inputs: List[Optional[str]] = []
        self.syncs = 0

    def run(self, command, *args, input_text=None) -> int:
        argv = [str(command), *(str(arg) for arg in args)]
        self.calls.append(argv)
        self.inputs.append(input_text)
        script = self.returncodes.get(os.path.basename(argv[0]), 0)
        if isinstance(script, list):
            return script.pop(0) if script else 0
        return script

    def sync(self) -> None:
        self.syncs += 1

    @property
    def tools(self) -> List[str]:
        return [os.path.basename(call[0]) for call in self.calls]

    def calls_for(self, tool: str) -> List[List[str]]:
        return [call for call in self.calls if os.path.basename(call[0]) == tool]


@pytest.fixture
def fake_runner() -> FakeRunner:
    """Fixture providing a runner where every tool succeeds."""
    return FakeRunner()


@pytest.fixture
def runner_factory():
    """Fixture providing the FakeRunner class for scripted exit codes."""
    return FakeRunner


# ==============================================================================
# Settings Fixtures
# ==============================================================================


SYSLINUX_TEMPLATE = "default boot\nui vesamenu.c32\ntimeout 50\n\n"


@pytest.fixture
def settings(tmp_path) -> InstallerSettings:
    """
    Fixture providing settings rooted in tmp_path.

    The syslinux binary is an executable placeholder and the support file
    directory holds a template plus two loader modules.
    """
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    syslinux_bin = bin_dir / "syslinux"
    syslinux_bin.write_text("#!/bin/sh\n")
    syslinux_bin.chmod(0o755)

    files_dir = tmp_path / "syslinux"
    files_dir.mkdir()
    (files_dir / "syslinux.cfg").write_text(SYSLINUX_TEMPLATE)
    (files_dir / "android.c32").write_bytes(b"c32 module")
    (files_dir / "vesamenu.c32").write_bytes(b"menu module")

    return InstallerSettings(
        mke2fs_bin=str(bin_dir / "mke2fs"),
        make_ext4fs_bin=str(bin_dir / "make_ext4fs"),
        e2fsck_bin=str(bin_dir / "e2fsck"),
        tune2fs_bin=str(bin_dir / "tune2fs"),
        resize2fs_bin=str(bin_dir / "resize2fs"),
        simg2img_bin=str(bin_dir / "simg2img"),
        mkdosfs_bin=str(bin_dir / "newfs_msdos"),
        fsck_msdos_bin=str(bin_dir / "fsck_msdos"),
        syslinux_bin=str(syslinux_bin),
        bootloader_mount_point=str(tmp_path / "bootloader"),
        syslinux_files_dir=str(files_dir),
        data_dir=str(tmp_path / "data"),
    )


# ==============================================================================
# Disk Layout Fixtures
# ==============================================================================


@pytest.fixture
def android_layout() -> DiskLayout:
    """
    Fixture providing a six partition MBR layout on /dev/sda.

    Partition numbers: bootloader=1, misc=2, boot=3, recovery=5 (logical),
    system=6, data=7.
    """
    return parse_disk_layout(
        {
            "device": "/dev/sda",
            "skip_lba": 2048,
            "partitions": [
                {"name": "bootloader", "len_kb": 32768, "type": "vfat", "active": True},
                {"name": "misc", "len_kb": 1024},
                {"name": "boot", "len_kb": 16384},
                {"name": "recovery", "len_kb": 16384},
                {"name": "system", "len_kb": 102400},
                {"name": "data", "len_kb": 65536},
            ],
        }
    )


@pytest.fixture
def layout_without_recovery() -> DiskLayout:
    """Fixture providing a four partition layout lacking 'recovery'."""
    return parse_disk_layout(
        {
            "device": "/dev/sda",
            "skip_lba": 2048,
            "partitions": [
                {"name": "bootloader", "len_kb": 32768, "type": "vfat"},
                {"name": "misc", "len_kb": 1024},
                {"name": "boot", "len_kb": 16384},
                {"name": "system", "len_kb": 102400},
            ],
        }
    )


# ==============================================================================
# Image File Fixtures
# ==============================================================================


def make_sparse_header(block_size: int = 4096, total_blocks: int = 256) -> bytes:
    return struct.pack(
        SPARSE_HEADER_FORMAT, SPARSE_HEADER_MAGIC, 1, 0, 28, 12, block_size, total_blocks, 1, 0
    )


@pytest.fixture
def sparse_image(tmp_path) -> Path:
    """Fixture providing a file that starts with a sparse image header."""
    path = tmp_path / "system.img"
    path.write_bytes(make_sparse_header() + b"\0" * 64)
    return path


@pytest.fixture
def sparse_header_bytes() -> bytes:
    return make_sparse_header()


@pytest.fixture
def raw_image(tmp_path) -> Path:
    """Fixture providing a small non-sparse image file."""
    path = tmp_path / "raw.img"
    path.write_bytes(b"RAWDATA!" * 8)
    return path
