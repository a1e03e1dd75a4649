"""Check that removed members and disabled identity accounts agree.

Exit codes:
    0  no divergence
    1  divergence found (operator action needed)
    2  a store could not be read
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

EXIT_CLEAN = 0
EXIT_DIVERGENCE = 1
EXIT_ERROR = 2


def main(argv: Optional[List[str]] = None) -> int:
    """Command-line entry point."""
    parser = argparse.ArgumentParser(description="Membership / identity ban consistency check")
    parser.add_argument("--tenant", default=None, help="Restrict the check to one tenant")
    parser.add_argument("--json", action="store_true", help="Emit the report as JSON")
    parser.add_argument("--remediate", action="store_true",
                        help="Align identity accounts with membership status for every divergent member")
    parser.add_argument("--operator", default="automation",
                        help="Operator identifier for audit logs (default: automation)")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    auditor = build_services(load_settings()).auditor

    print("[consistency] Checking ban consistency...", file=sys.stderr)
    try:
        report = auditor.run(tenant_id=args.tenant)
    except TeamError as e:
        print(f"[consistency] Error: {e}", file=sys.stderr)
        return EXIT_ERROR

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(report.render())

    if report.clean:
        return EXIT_CLEAN

    if args.remediate:
        outcomes = auditor.remediate(report, operator=args.operator)
        for outcome in outcomes:
            status = "aligned" if outcome.success else f"failed: {outcome.error}"
            print(f"[remediate] Member '{outcome.membership_id}' {status}", file=sys.stderr)

    return EXIT_DIVERGENCE


if __name__ == "__main__":
    sys.exit(main())
