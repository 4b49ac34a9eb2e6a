"""DocVault accounts: manager applications and logins."""

from docvault.accounts.service import (
    AccountService,
    ApplicationDecision,
    hash_password,
    verify_password,
)

__all__ = ["AccountService", "ApplicationDecision", "hash_password", "verify_password"]
