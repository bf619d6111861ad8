"""Loading, merging, defaulting and validation of VM instance configuration and host network settings."""

__version__ = "0.1.0"