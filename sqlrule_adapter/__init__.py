"""SQL storage adapter for access-control policy rules, built on SQLAlchemy."""

__version__ = "0.1.0"

__all__ = ["adapter", "drivers", "model", "rules"]