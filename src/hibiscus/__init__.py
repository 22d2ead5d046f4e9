"""Hibiscus - AI image and video generation client."""

__version__ = "0.1.0"
