"""Kroma Studio - AI video production with credit-gated generation."""

__version__ = "0.1.0"
