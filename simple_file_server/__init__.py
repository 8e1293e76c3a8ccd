"""Minimal HTTP file drop with disk-quota enforcement."""

from simple_file_server.config import VERSION

__version__ = VERSION
