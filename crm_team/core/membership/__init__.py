"""Membership store client library.

Architecture:
- client.py: PostgREST HTTP client (auth headers, schema profile, timeouts)
- store.py: Typed tenant-scoped CRUD
- models.py: MembershipRecord, NewMembership, MembershipStatus
"""
from .client import MembershipStoreClient
from .models import MembershipRecord, MembershipStatus, NewMembership
from .store import MembershipStore

__all__ = [
    "MembershipStoreClient",
    "MembershipStore",
    "MembershipRecord",
    "MembershipStatus",
    "NewMembership",
]
