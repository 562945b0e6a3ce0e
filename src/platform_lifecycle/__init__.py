"""Lifecycle management for platforms: named, versioned base build templates."""

__version__ = "0.1.0"
