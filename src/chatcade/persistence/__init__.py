"""Durable storage for resumable sessions."""

from . import balatro_store

__all__ = ["balatro_store"]
