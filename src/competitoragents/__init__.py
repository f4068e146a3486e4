"""Competitor analysis provider toolkit."""

__version__ = "0.1.0"
