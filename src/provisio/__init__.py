"""Provisio - render blueprint bundles and apply declarative documents."""

__version__ = "0.4.0"
