from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field

from app.stockline.core.logging import log_alert, log_json
from app.stockline.core.metrics import metrics
from app.stockline.db.models import TransferRequest
from app.stockline.repos.ledger import LedgerRepository
from app.stockline.repos.transfers import TransferRepository
from app.stockline.repos.variances import VarianceRepository
from app.stockline.services.ledger import TRANSFER_IN, TRANSFER_OUT
from app.stockline.services.transfers import (
    STATUS_COMPLETED,
    STATUS_IN_TRANSIT,
    STATUS_RECEIVED,
    TRANSFER_STATUSES,
    all_lines,
)


logger = logging.getLogger(__name__)

SEVERITY_CRITICAL = "CRITICAL"
POSTED_STATUSES = {STATUS_IN_TRANSIT, STATUS_RECEIVED, STATUS_COMPLETED}


@dataclass(frozen=True)
class LineBalance:
    line_id: str
    item_kind: str
    item_id: str
    transfer_out: int | None
    transfer_in: int | None
    net: int
    variance: int
    balanced: bool


@dataclass(frozen=True)
class LedgerFinding:
    check_id: str
    transfer_id: str
    reference: str
    status: str
    message: str
    line_id: str | None = None
    item_kind: str | None = None
    severity: str = SEVERITY_CRITICAL
    details: dict = field(default_factory=dict)

    def as_dict(self) -> dict:
        return asdict(self)


class ReconciliationService:
    """Re-derives every transfer's ledger position from the movement tables.

    A line is balanced when its summed movements plus its recorded variance is zero.
    Lines of transfers that never shipped must have no movements at all.
    """

    def __init__(self, db):
        self.db = db
        self.transfers = TransferRepository(db)
        self.ledger = LedgerRepository(db)
        self.variances = VarianceRepository(db)

    def line_balances(self, transfer: TransferRequest) -> list[LineBalance]:
        totals = {
            "product": self.ledger.line_totals("product", transfer.id),
            "packaging": self.ledger.line_totals("packaging", transfer.id),
        }
        variances = {variance.line_id: variance for variance in self.variances.list_for_transfer(transfer.id)}
        balances = []
        for line in all_lines(transfer):
            sides = totals[line.item_kind].get(line.id, {})
            out_qty = sides.get(TRANSFER_OUT)
            in_qty = sides.get(TRANSFER_IN)
            net = sum(sides.values())
            recorded = variances.get(line.id)
            variance = recorded.variance if recorded else 0
            balances.append(
                LineBalance(
                    line_id=str(line.id),
                    item_kind=line.item_kind,
                    item_id=str(line.item_id),
                    transfer_out=out_qty,
                    transfer_in=in_qty,
                    net=net,
                    variance=variance,
                    balanced=net + variance == 0,
                )
            )
        return balances

    def check_transfer(self, transfer: TransferRequest) -> list[LedgerFinding]:
        findings: list[LedgerFinding] = []
        variances = {variance.line_id: variance for variance in self.variances.list_for_transfer(transfer.id)}
        balances = {balance.line_id: balance for balance in self.line_balances(transfer)}

        def finding(check_id: str, message: str, line, **details) -> None:
            findings.append(
                LedgerFinding(
                    check_id=check_id,
                    transfer_id=str(transfer.id),
                    reference=transfer.reference,
                    status=transfer.status,
                    message=message,
                    line_id=str(line.id),
                    item_kind=line.item_kind,
                    details=details,
                )
            )

        for line in all_lines(transfer):
            balance = balances[str(line.id)]
            if transfer.status not in POSTED_STATUSES:
                if balance.transfer_out is not None or balance.transfer_in is not None:
                    finding("movements_before_dispatch", "ledger movements exist for an unshipped transfer", line)
                continue

            approved = line.quantity_approved or 0
            if balance.transfer_out != -approved:
                finding(
                    "source_side_mismatch",
                    "transfer_out does not match the approved quantity",
                    line,
                    expected=-approved,
                    actual=balance.transfer_out,
                )
            if transfer.status == STATUS_IN_TRANSIT:
                if balance.transfer_in is not None:
                    finding("destination_side_early", "transfer_in posted before receipt", line, actual=balance.transfer_in)
                continue

            if balance.transfer_in is None:
                finding("destination_side_missing", "transfer_in missing for a delivered transfer", line)
                continue
            expected_in = line.quantity_received if line.quantity_received is not None else approved
            if balance.transfer_in != expected_in:
                finding(
                    "destination_side_mismatch",
                    "transfer_in does not match the counted quantity",
                    line,
                    expected=expected_in,
                    actual=balance.transfer_in,
                )
            expected_variance = approved - expected_in
            recorded = variances.get(line.id)
            recorded_variance = recorded.variance if recorded else 0
            if recorded_variance != expected_variance:
                finding(
                    "variance_mismatch",
                    "recorded variance does not match the receipt count",
                    line,
                    expected=expected_variance,
                    actual=recorded_variance,
                )
            if not balance.balanced:
                finding(
                    "line_unbalanced",
                    "ledger sum plus variance is not zero",
                    line,
                    net=balance.net,
                    variance=balance.variance,
                )
        return findings

    def sweep(self, statuses: set[str] | None = None) -> list[LedgerFinding]:
        transfers = self.transfers.list_by_statuses(set(statuses or TRANSFER_STATUSES))
        findings: list[LedgerFinding] = []
        for transfer in transfers:
            findings.extend(self.check_transfer(transfer))
        for item in findings:
            metrics.increment_invariant_violation(item.check_id)
            log_alert(logger, {"event": "ledger_reconciliation_finding", **item.as_dict()})
        log_json(
            logger,
            {
                "event": "ledger_reconciliation_sweep",
                "transfers_checked": len(transfers),
                "findings": len(findings),
            },
        )
        return findings
