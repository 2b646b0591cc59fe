"""Declarative disk image installer.

Lays out a block device from a partition description, then writes or formats
each configured image in order, driving the external filesystem tools.
"""

from .__version__ import __version__

__all__ = ["__version__"]
