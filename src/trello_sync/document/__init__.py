"""Local document formats."""

from .outline import DocumentParser, OutlineDocument

__all__ = ["DocumentParser", "OutlineDocument"]
