"""Release operations manager - chart release orchestration and CRD migration."""

__version__ = "0.4.0"
