"""cliptrail: local clipboard history engine."""

__version__ = "0.3.0"
