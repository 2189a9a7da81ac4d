"""Livestock registry: pen admission, genealogy and access scoping for farm records."""

__version__ = "0.1.0"
