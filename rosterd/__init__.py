"""Presence-aware messaging relay hub over Reticulum."""

__version__ = "0.1.0"
