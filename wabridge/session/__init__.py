"""Durable session credential storage."""

from wabridge.session.credentials import CredentialStore

__all__ = ["CredentialStore"]
