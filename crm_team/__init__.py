"""CRM team-membership identity lifecycle.

To use the lifecycle services:
    from crm_team.core.factory import build_services

To run the consistency check:
    crm-ban-consistency   (or: python -m crm_team.cli.check_ban_consistency)
"""
