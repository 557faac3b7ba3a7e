"""CLI utility to run periodic ledger consistency checks."""

from __future__ import annotations

import argparse
import logging
from typing import Optional

from .. import models
from ..database import session_scope
from ..services.aggregation import AggregationService
from ..services.data_consistency import LedgerConsistencyService

LOGGER = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Check charges, payment allocations, credit balances and aggregation "
            "snapshots for inconsistencies; suitable for cron."
        )
    )
    parser.add_argument(
        "--rebuild",
        action="store_true",
        help="Rebuild snapshots that are stale or drift from the ledger.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log every finding instead of only the counts.",
    )
    return parser.parse_args(argv)


def _log_findings(label: str, items: list) -> None:
    if not items:
        LOGGER.info("%s: no findings", label)
        return
    LOGGER.warning("%s: %s findings", label, len(items))
    for item in items:
        LOGGER.debug("%s detail: %s", label, item)


def _rebuild_snapshots(db, drift) -> int:
    scopes = {(item.client_id, item.module, item.fiscal_year) for item in drift}
    stale = (
        db.query(models.AggregationSnapshot)
        .filter(models.AggregationSnapshot.status == models.SnapshotStatus.STALE)
        .all()
    )
    scopes.update(
        (str(snapshot.client_id), models.BillingModule(snapshot.module).value, snapshot.fiscal_year)
        for snapshot in stale
    )
    for client_id, module, fiscal_year in sorted(scopes):
        LOGGER.info("Rebuilding %s snapshot FY%s of client %s", module, fiscal_year, client_id)
        AggregationService.rebuild_all(db, client_id, models.BillingModule(module), fiscal_year)
    return len(scopes)


def main(argv: Optional[list[str]] = None) -> int:
    args = _parse_args(argv)
    _configure_logging(args.verbose)

    with session_scope() as db:
        report = LedgerConsistencyService.ledger_report(db)

        _log_findings("Charges violating their invariants", report.charge_violations)
        _log_findings("Payments whose allocations do not sum", report.allocation_mismatches)
        _log_findings("Units whose credit history disagrees", report.credit_mismatches)
        _log_findings("Snapshot entries drifting from the ledger", report.snapshot_drift)

        if args.rebuild:
            rebuilt = _rebuild_snapshots(db, report.snapshot_drift)
            LOGGER.info("Rebuilt %s snapshots", rebuilt)

    LOGGER.info("Ledger consistency check finished")
    ledger_ok = not (
        report.charge_violations or report.allocation_mismatches or report.credit_mismatches
    )
    return 0 if ledger_ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
