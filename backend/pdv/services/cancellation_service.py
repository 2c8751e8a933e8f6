# Overview: Service-layer operations for cancelling committed sales.

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..errors import (
    AlreadyCancelledError,
    CancellationIncompleteError,
    PartialFailureWarning,
    PdvError,
)
from ..models import Sale
from ..models.sales import SALE_CANCELLED, SALE_COMPLETED
from ..time_utils import utcnow
from .concurrency import Deadline
from .inventory_service import reverse_sale_line
from .persistence import Repository, get_repository
from .sales_service import get_sale, get_sale_lines
"""
Cancellation Invariants (authoritative)

- Only COMPLETED sales can be cancelled; status moves to CANCELLED once.
- Stock is restored per line, and only for lines whose sale decrement was
  journaled. A line already restored by an earlier attempt is not restored
  again.
- The status flips only after every reversal succeeded. Otherwise the sale
  stays COMPLETED and CancellationIncompleteError lists the failures; the
  caller retries.
- The SALE cash movement stays in the ledger.
"""


@dataclass
class CancellationSummary:
    sale_id: int
    status: str
    restored: list[dict] = field(default_factory=list)
    warnings: list[PartialFailureWarning] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "sale_id": self.sale_id,
            "status": self.status,
            "restored": list(self.restored),
            "warnings": [w.to_dict() for w in self.warnings],
        }


def cancel_sale(
    sale_id: int,
    user_id: int | None = None,
    reason: str | None = None,
    *,
    deadline: Deadline | None = None,
    repository: Repository | None = None,
) -> CancellationSummary:
    repo = get_repository(repository)
    sale = get_sale(sale_id, repo)
    if sale.status == SALE_CANCELLED:
        raise AlreadyCancelledError("Sale already cancelled", details={"sale_id": sale_id})

    display_number = sale.display_number
    note = f"Cancel sale {display_number}"

    restored: list[dict] = []
    skipped: list[dict] = []
    failures: list[dict] = []

    for line in get_sale_lines(sale_id, repo):
        if deadline is not None:
            deadline.check(f"stock reversal of line {line.id}")
        try:
            adjustment = reverse_sale_line(line, user_id=user_id, note=note, repository=repo)
        except PdvError as exc:
            failures.append({
                "sale_line_id": line.id,
                "product_id": line.product_id,
                "error": exc.message,
            })
            continue
        entry = {"sale_line_id": line.id, **adjustment.to_dict()}
        if adjustment.applied:
            restored.append(entry)
        else:
            skipped.append(entry)

    if failures:
        current_app.logger.warning(
            "Cancellation of sale %s incomplete: %s of %s reversals failed",
            display_number, len(failures), len(failures) + len(restored) + len(skipped),
        )
        raise CancellationIncompleteError(
            "Some stock reversals failed; the sale was not cancelled",
            details={"sale_id": sale_id, "failures": failures, "restored": restored},
            retryable=True,
        )

    flipped = repo.update(
        Sale,
        sale_id,
        {
            "status": SALE_CANCELLED,
            "cancelled_at": utcnow(),
            "cancelled_by_user_id": user_id,
            "cancel_reason": reason,
        },
        expect={"status": SALE_COMPLETED},
    )
    if not flipped:
        raise AlreadyCancelledError("Sale already cancelled", details={"sale_id": sale_id})

    warnings = [
        PartialFailureWarning(
            step="stock_reversal",
            message="Nothing to restore: stock was never decremented",
            sale_id=sale_id,
            sale_line_id=entry["sale_line_id"],
            product_id=entry["product_id"],
        )
        for entry in skipped
        if entry["skipped_reason"] == "never_decremented"
    ]

    current_app.logger.info(
        "Sale %s cancelled by user %s: %s line(s) restored", display_number, user_id, len(restored),
    )
    return CancellationSummary(
        sale_id=sale_id,
        status=SALE_CANCELLED,
        restored=restored + [e for e in skipped if e["skipped_reason"] == "already_applied"],
        warnings=warnings,
    )
