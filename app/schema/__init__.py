"""ORM tables."""

from .jobs import GenerationJob

__all__ = ["GenerationJob"]
