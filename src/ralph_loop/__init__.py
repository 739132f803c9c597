"""Supervisor for unattended two-phase coding-agent loops."""

__version__ = "0.1.0"
