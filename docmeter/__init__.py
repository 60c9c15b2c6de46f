"""Entitlement and usage metering backend for the document converter."""

__version__ = "0.1.0"
