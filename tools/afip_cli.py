#!/usr/bin/env python3
"""
CLI de operador para AFIP (WSAA + WSFEv1)

Ejemplos:
    python tools/afip_cli.py --env test status
    python tools/afip_cli.py last-number --type 6 --pto 1
    python tools/afip_cli.py query --type 6 --pto 1 --number 101
    python tools/afip_cli.py authorize --sale-json venta.json
    python tools/afip_cli.py check-cuit 20-40937847-2
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any, Optional

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from afip_minisender.core_authorize import InvoiceOrchestrator, snapshot_from_dict
from app.afip_client.cuit_validator import format_cuit, get_cuit_type, validate_cuit
from app.afip_client.exceptions import (
    AfipAlreadyAuthorizedError,
    AfipConfigurationError,
    AfipException,
    AfipValidationError,
)
from app.afip_client.formatters import to_afip_date

logger = logging.getLogger("afip_cli")


def _print_json(data: Any) -> None:
    if is_dataclass(data):
        data = asdict(data)
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def _build_orchestrator(env: Optional[str]) -> InvoiceOrchestrator:
    return InvoiceOrchestrator.from_env(env)


def _cmd_status(args) -> int:
    status = _build_orchestrator(args.env).server_status()
    _print_json(status)
    return 0 if status.ok else 1


def _cmd_last_number(args) -> int:
    orchestrator = _build_orchestrator(args.env)
    number = orchestrator.last_authorized_number(args.type, args.pto)
    _print_json({"invoice_type": args.type, "sale_point": args.pto or orchestrator.config.sale_point, "last_number": number})
    return 0


def _cmd_query(args) -> int:
    orchestrator = _build_orchestrator(args.env)
    record = orchestrator.reconcile_invoice(args.type, args.pto or orchestrator.config.sale_point, args.number)
    if record is None:
        print(f"Comprobante {args.type}/{args.pto}/{args.number} no encontrado en AFIP")
        return 1
    _print_json(record)
    return 0


def _cmd_sales_points(args) -> int:
    points = _build_orchestrator(args.env).client.get_sales_points()
    _print_json([asdict(p) for p in points])
    return 0


def _cmd_authorize(args) -> int:
    path = Path(args.sale_json)
    if not path.exists() or not path.is_file():
        raise SystemExit(f"ERROR: --sale-json no existe o no es archivo: {path}")
    sale = snapshot_from_dict(json.loads(path.read_text(encoding="utf-8")))
    result = _build_orchestrator(args.env).authorize_invoice(sale)
    _print_json(result.to_dict())
    return 0 if result.success else 1


def _cmd_check_cuit(args) -> int:
    valid = validate_cuit(args.cuit)
    _print_json({
        "cuit": format_cuit(args.cuit),
        "valid": valid,
        "type": get_cuit_type(args.cuit) if valid else None,
    })
    return 0 if valid else 1


def _cmd_today(args) -> int:
    print(to_afip_date())
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Operaciones de Factura Electrónica AFIP (WSFEv1).")
    ap.add_argument("--env", choices=["test", "prod"], default=None, help="Ambiente (por defecto AFIP_ENV)")
    ap.add_argument("-v", "--verbose", action="store_true", help="Logging DEBUG")
    sub = ap.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="FEDummy: estado de los servidores de AFIP").set_defaults(func=_cmd_status)

    p = sub.add_parser("last-number", help="Último comprobante autorizado")
    p.add_argument("--type", type=int, required=True, help="Código de comprobante (ej: 6 = Factura B)")
    p.add_argument("--pto", type=int, default=None, help="Punto de venta (por defecto AFIP_PUNTO_VENTA)")
    p.set_defaults(func=_cmd_last_number)

    p = sub.add_parser("query", help="FECompConsultar")
    p.add_argument("--type", type=int, required=True)
    p.add_argument("--pto", type=int, default=None)
    p.add_argument("--number", type=int, required=True)
    p.set_defaults(func=_cmd_query)

    sub.add_parser("sales-points", help="Puntos de venta habilitados").set_defaults(func=_cmd_sales_points)

    p = sub.add_parser("authorize", help="Autoriza una venta desde un JSON (importes en centavos)")
    p.add_argument("--sale-json", required=True)
    p.set_defaults(func=_cmd_authorize)

    p = sub.add_parser("check-cuit", help="Valida un CUIT/CUIL")
    p.add_argument("cuit")
    p.set_defaults(func=_cmd_check_cuit)

    sub.add_parser("today", help="Fecha actual en formato AFIP (hora argentina)").set_defaults(func=_cmd_today)
    return ap


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return args.func(args)
    except AfipConfigurationError as e:
        print(f"ERROR de configuración: {e}", file=sys.stderr)
        return 2
    except AfipAlreadyAuthorizedError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    except AfipValidationError as e:
        print(f"ERROR de validación: {e}", file=sys.stderr)
        return 1
    except AfipException as e:
        logger.error(f"Falla de comunicación con AFIP: {e}")
        return 3


if __name__ == "__main__":
    raise SystemExit(main())
