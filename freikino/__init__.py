"""Matroska subtitle extraction, ASS document building and playback helpers."""

__version__ = "0.1.0"