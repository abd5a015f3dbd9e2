"""Per-user credential storage for blogging platforms."""

from crosspost.security.credential_store import CredentialStore

__all__ = ["CredentialStore"]
