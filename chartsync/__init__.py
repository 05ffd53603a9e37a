"""Publish Helm charts to object-store backed repositories."""

__version__ = "0.1.0"
