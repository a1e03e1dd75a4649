"""Wiring of clients and services from a single TeamConfig."""
from __future__ import annotations
from dataclasses import dataclass

from crm_team.config import TeamConfig
from crm_team.core.audit import AuditLog
from crm_team.core.ban_coordinator import BanCoordinator
from crm_team.core.identity import AccountService, IdentityClient
from crm_team.core.lifecycle_service import MembershipLifecycleService
from crm_team.core.membership import MembershipStore, MembershipStoreClient
from crm_team.core.reconciliation import ReconciliationAuditor


@dataclass
class TeamServices:
    accounts: AccountService
    store: MembershipStore
    ban_coordinator: BanCoordinator
    lifecycle: MembershipLifecycleService
    auditor: ReconciliationAuditor
    audit_log: AuditLog


def build_services(config: TeamConfig) -> TeamServices:
    """Construct every component once, sharing the same config and clients."""
    accounts = AccountService(IdentityClient(config), config)
    store = MembershipStore(MembershipStoreClient(config), config)
    audit_log = AuditLog(config)
    ban_coordinator = BanCoordinator(accounts, store)
    lifecycle = MembershipLifecycleService(accounts, store, ban_coordinator, config, audit_log=audit_log)
    auditor = ReconciliationAuditor(accounts, store, ban_coordinator=ban_coordinator, audit_log=audit_log)
    return TeamServices(
        accounts=accounts,
        store=store,
        ban_coordinator=ban_coordinator,
        lifecycle=lifecycle,
        auditor=auditor,
        audit_log=audit_log,
    )
