"""Leveraged yield allocator: a multi-venue allocation engine with an optional
looped lending position."""

__version__ = "0.1.0"
