"""EzSign background job processing."""

__version__ = "1.0.0"
