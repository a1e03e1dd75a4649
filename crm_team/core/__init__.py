"""Core Business Logic Module

Team-membership identity lifecycle, independent of any HTTP framework.

Module Structure:
    - identity/             : Identity provider (Keycloak Admin API) client
    - membership/           : Membership table (PostgREST) client
    - ban_coordinator.py    : Remove/restore across both stores
    - lifecycle_service.py  : Invite, blacklist, remove, restore
    - reconciliation.py     : Divergence auditor and remediation
    - saga.py               : Multi-step operations with compensation
    - transitions.py        : Lifecycle operation -> status transition table
    - audit.py              : Signed JSONL audit trail
    - errors.py             : Error kinds
    - factory.py            : Wiring from a TeamConfig

Usage Pattern:
    Import explicitly when needed:
        from crm_team.config import load_settings
        from crm_team.core.factory import build_services

        services = build_services(load_settings())
        services.lifecycle.remove("admin-1", "M1")
"""
