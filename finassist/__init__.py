"""Financial Assistant chat relay."""

__version__ = "1.0.0"
