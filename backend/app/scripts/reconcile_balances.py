"""CLI utility to run ledger consistency checks and repair drifted balances."""

from __future__ import annotations

import argparse
import logging
from typing import Optional

from ..database import session_scope
from ..services.data_consistency import DataConsistencyService
from ..services.errors import LedgerError

LOGGER = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Verifica que el saldo de cada cliente coincida con sus cargos pendientes "
            "y que cada pago cuadre con los cargos que cubre."
        )
    )
    parser.add_argument(
        "--repair",
        action="store_true",
        help="Recalcula el saldo de los clientes con diferencias.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Muestra el detalle de cada anomalía detectada.",
    )
    return parser.parse_args(argv)


def _log_mismatches(label: str, items: list) -> None:
    if not items:
        LOGGER.info("%s: sin hallazgos", label)
        return
    LOGGER.warning("%s: %s hallazgos", label, len(items))
    for item in items:
        LOGGER.debug("%s detalle: %s", label, item)


def main(argv: Optional[list[str]] = None) -> int:
    args = _parse_args(argv)
    _configure_logging(args.verbose)

    with session_scope() as db:
        snapshot = DataConsistencyService.check_consistency(db)

        _log_mismatches("Saldos distintos a los cargos pendientes", snapshot.balance_drift)
        _log_mismatches(
            "Cargos con estatus inconsistente", snapshot.charge_status_mismatches
        )
        _log_mismatches(
            "Pagos que no cuadran con sus cargos", snapshot.payment_allocation_mismatches
        )
        _log_mismatches("Periodos duplicados", snapshot.duplicate_periods)

        failures = 0
        if args.repair:
            for drift in snapshot.balance_drift:
                try:
                    balance = DataConsistencyService.reconcile_balance(db, drift.client_id)
                except LedgerError as exc:
                    failures += 1
                    LOGGER.error("No se pudo reconciliar %s: %s", drift.client_id, exc)
                    continue
                LOGGER.info("Saldo de %s ajustado a %s", drift.client_id, balance)

    LOGGER.info("Chequeo de consistencia finalizado")
    if failures:
        return 2
    return 0 if snapshot.is_consistent or args.repair else 1


if __name__ == "__main__":
    raise SystemExit(main())
