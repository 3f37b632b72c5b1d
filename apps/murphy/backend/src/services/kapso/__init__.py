from .client import KapsoClient

__all__ = ["KapsoClient"]
