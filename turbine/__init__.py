"""Configuration, container records, networking, process and security managers for Linux containers."""

__version__ = "0.1.0"