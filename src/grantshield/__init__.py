"""grantshield - security and compliance event pipeline for grant management."""

__version__ = "0.1.0"
