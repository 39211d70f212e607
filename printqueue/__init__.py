"""Karma-ordered print queue for a shared 3D printer."""

__version__ = "0.1.0"
