"""Expose router modules."""

__all__ = ["visitors"]
