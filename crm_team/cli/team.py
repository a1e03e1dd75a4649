"""Operator CLI for team membership lifecycle operations.

This module serves as a CLI wrapper around crm_team.core.lifecycle_service.
"""
from __future__ import annotations
import argparse
import json
import logging
import sys
from typing import List, Optional

from crm_team.config import load_settings
from crm_team.core.errors import TeamError
from crm_team.core.factory import build_services
from crm_team.core.lifecycle_service import InviteRequest


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="CRM team membership lifecycle helper")
    parser.add_argument("--requester", required=True,
                        help="Identity account id of the operator issuing the command")
    parser.add_argument("--tenant", default=None, help="Tenant id (resolved from the requester when omitted)")
    parser.add_argument("--verbose", action="store_true")

    sub = parser.add_subparsers(dest="cmd")

    si = sub.add_parser("invite")
    si.add_argument("--email", required=True)
    si.add_argument("--name", required=True)
    si.add_argument("--role", required=True)

    for name in ("blacklist", "remove", "restore"):
        sp = sub.add_parser(name)
        sp.add_argument("--member", required=True, help="Membership record id")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Command-line entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not args.cmd:
        parser.print_help()
        return 2

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    services = build_services(load_settings())
    lifecycle = services.lifecycle

    try:
        if args.cmd == "invite":
            result = lifecycle.invite(
                args.requester,
                InviteRequest(email=args.email, display_name=args.name, role=args.role, tenant_id=args.tenant),
            )
            print(f"[invite] Member '{result.membership.id}' created for {result.membership.email}", file=sys.stderr)
            # Generated secret is shown once, on stdout only
            print(json.dumps({"success": True, "credentials": result.to_dict()}))
        elif args.cmd == "blacklist":
            record = lifecycle.blacklist(args.member, requester_id=args.requester, tenant_id=args.tenant)
            print(f"[blacklist] Member '{record.id}' blacklisted", file=sys.stderr)
            print(json.dumps({"success": True}))
        elif args.cmd == "remove":
            record = lifecycle.remove(args.requester, args.member, tenant_id=args.tenant)
            print(f"[remove] Member '{record.id}' removed and identity disabled", file=sys.stderr)
            print(json.dumps({"success": True}))
        elif args.cmd == "restore":
            record = lifecycle.restore(args.requester, args.member, tenant_id=args.tenant)
            print(f"[restore] Member '{record.id}' restored", file=sys.stderr)
            print(json.dumps({"success": True}))
    except TeamError as e:
        print(f"[{args.cmd}] Error: {e}", file=sys.stderr)
        for warning in e.compensation_failures:
            print(f"[{args.cmd}] Warning: {warning}", file=sys.stderr)
        print(json.dumps({"success": False, **e.to_dict()}))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
