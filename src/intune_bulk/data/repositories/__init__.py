"""Persistence repositories."""

from .jobs import JobRepository

__all__ = ["JobRepository"]
