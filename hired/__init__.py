"""HIRED core: identity, entitlements, quota accounting and attempt lifecycle."""

__version__ = "0.1.0"
