"""Configuration loading: installer settings, image list and disk layout."""

from .installer import ImageEntry, load_disk_layout, load_installer_config
from .settings import InstallerSettings, load_settings

__all__ = [
    "ImageEntry",
    "InstallerSettings",
    "load_disk_layout",
    "load_installer_config",
    "load_settings",
]
