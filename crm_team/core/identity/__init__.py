"""Identity provider client library.

Architecture:
- client.py: HTTP client with authentication, auto-refresh and timeouts
- accounts.py: Account lifecycle (create, delete, disable, paginated listing)
- passwords.py: Initial secret generation

Usage:
    from crm_team.core.identity import IdentityClient, AccountService

    client = IdentityClient(config)
    accounts = AccountService(client, config)
    created = accounts.create_account("ana@example.com", "Ana", "closer")
"""
from .client import IdentityClient
from .accounts import AccountService, CreatedAccount, IdentityAccount
from .passwords import CHARSET, MIN_SECRET_LENGTH, generate_secret

__all__ = [
    "IdentityClient",
    "AccountService",
    "CreatedAccount",
    "IdentityAccount",
    "CHARSET",
    "MIN_SECRET_LENGTH",
    "generate_secret",
]
