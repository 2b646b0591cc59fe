"""Installer services: image entry resolution and the installation run."""
