"""Tether — orchestrates a coding-agent CLI and narrates its output."""

__version__ = "0.1.0"
