"""Test doubles for cardsync."""

from .remote import FakeClock, InMemoryRemoteStore

__all__ = ["FakeClock", "InMemoryRemoteStore"]
