"""Model dispatch and credit transactions for the image enhancement service."""

__version__ = "1.0.0"
