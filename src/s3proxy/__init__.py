"""Serve objects from an S3 bucket as static files."""

__version__ = "0.1.0"
