"""CLI utility to generate the recurring charge of a period for every client."""

from __future__ import annotations

import argparse
import logging
from typing import Optional

from ..database import session_scope
from ..services.billing_periods import BillingPeriod
from ..services.ledger import ChargeLedgerService

LOGGER = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Genera la mensualidad del periodo indicado para todos los clientes. "
            "Ejecutarlo dos veces no duplica cargos."
        )
    )
    parser.add_argument(
        "--period",
        help="Periodo en formato YYYY-MM; por omisión el mes en curso.",
    )
    parser.add_argument(
        "--actor",
        help="Usuario que dispara la generación, para la bitácora.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Muestra el detalle por cliente.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    args = _parse_args(argv)
    _configure_logging(args.verbose)

    try:
        period = BillingPeriod.from_key(args.period) if args.period else None
    except ValueError as exc:
        LOGGER.error("%s", exc)
        return 2

    with session_scope() as db:
        report = ChargeLedgerService.generate_charges_for_period(db, period, actor=args.actor)

    LOGGER.info(
        "Periodo %s: %s creados, %s sin cambios, %s con error",
        report.period.key,
        len(report.created),
        len(report.skipped),
        len(report.failed),
    )
    for client_id, reason in report.failed.items():
        LOGGER.warning("Cliente %s: %s", client_id, reason)
    return 1 if report.failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
