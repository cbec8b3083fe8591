from __future__ import annotations

import argparse
import json
import sys
from collections import Counter

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.stockline.core.config import settings
from app.stockline.core.logging import configure_logging
from app.stockline.services.reconciliation import LedgerFinding, ReconciliationService
from app.stockline.services.transfers import TRANSFER_STATUSES


def _summarize(findings: list[LedgerFinding]) -> dict:
    by_check = Counter(finding.check_id for finding in findings)
    return {
        "total": len(findings),
        "critical": sum(1 for finding in findings if finding.severity == "CRITICAL"),
        "transfers": len({finding.transfer_id for finding in findings}),
        "by_check": dict(sorted(by_check.items())),
    }


def _format_text(summary: dict, findings: list[LedgerFinding]) -> str:
    lines = [
        "Ledger Reconciliation Report",
        f"Total findings: {summary['total']}",
        f"CRITICAL: {summary['critical']}",
        f"Transfers affected: {summary['transfers']}",
        "",
    ]
    for finding in findings:
        lines.append(
            f"[{finding.severity}] {finding.check_id} {finding.reference} status={finding.status} "
            f"line={finding.line_id or '-'} kind={finding.item_kind or '-'} {finding.message}"
        )
        if finding.details:
            lines.append(f"  details={json.dumps(finding.details, default=str)}")
    return "\n".join(lines)


def run_scan(
    output_format: str,
    fail_on_critical: bool,
    *,
    statuses: list[str] | None = None,
    database_url: str | None = None,
) -> int:
    if not settings.OPS_ENABLE_RECONCILIATION_SCAN:
        print("Reconciliation scan disabled by OPS_ENABLE_RECONCILIATION_SCAN.", file=sys.stderr)
        return 2
    engine = create_engine(database_url or settings.DATABASE_URL, future=True)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    with SessionLocal() as db:
        findings = ReconciliationService(db).sweep(set(statuses) if statuses else None)
    summary = _summarize(findings)
    if output_format == "json":
        print(json.dumps({"summary": summary, "findings": [f.as_dict() for f in findings]}, indent=2, default=str))
    else:
        print(_format_text(summary, findings))
    if fail_on_critical and summary["critical"] > 0:
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Stockline ledger reconciliation sweep")
    parser.add_argument("--format", choices=["json", "text"], default="text")
    parser.add_argument("--status", action="append", choices=list(TRANSFER_STATUSES), dest="statuses")
    parser.add_argument("--fail-on-critical", action="store_true")
    args = parser.parse_args(argv)
    configure_logging()
    return run_scan(args.format, args.fail_on_critical, statuses=args.statuses)


if __name__ == "__main__":
    raise SystemExit(main())
