"""Transport adapters for external mail stores."""

from .imap_client import ImapConnection, ImapError, ImapMailStore, ImapSubscription

__all__ = ["ImapConnection", "ImapError", "ImapMailStore", "ImapSubscription"]
