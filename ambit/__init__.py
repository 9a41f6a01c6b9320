"""Ambit — personal context graph."""

__version__ = "0.4.0"
