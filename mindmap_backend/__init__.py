"""Mindmap backend: topic in, Markmap-ready markdown out."""

__version__ = "3.0.0"
