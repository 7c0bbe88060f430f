"""Coldchain CLI: command-line interface for the compliance engine.

Usage:
    coldchain status
    coldchain grant-role --role sensor --principal sensor_1
    coldchain set-priors --f1 90 --f2 90
    coldchain set-cpt --node 1 --cpt 5 5 98 98
    coldchain --as shipper_1 create-shipment --carrier carrier_1 --amount 1000
    coldchain --as sensor_1 submit-evidence --shipment 1 --node 1 --value true
    coldchain --as carrier_1 validate-and-pay --shipment 1
    coldchain infer --evidence T T F F T

State lives in the event log under --data-dir (default: $COLDCHAIN_DATA_DIR
or ./data). Commands act as the principal given by --as, which defaults
to the configured admin.
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import sys
from pathlib import Path

from coldchain.access.roles import parse_role
from coldchain.config import Settings
from coldchain.crypto.anchor import anchor_to_chain
from coldchain.errors import ColdchainError
from coldchain.logging_config import configure_logging
from coldchain.models.network import NODE_IDS
from coldchain.persistence.event_log import EventLog
from coldchain.service import ComplianceService
from coldchain.settlement.receipt import SettlementReceipt, verify_receipt


_TRUE = {"t", "true", "1", "yes", "y"}
_FALSE = {"f", "false", "0", "no", "n"}


def parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise argparse.ArgumentTypeError(f"expected true/false, got {value!r}")


def _make_service(settings: Settings) -> ComplianceService:
    """Create a ComplianceService over the durable event log."""
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    event_log = EventLog(storage_path=settings.event_log_path)
    return ComplianceService(settings.admin, event_log=event_log)


def _print_json(data: object) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_status(args: argparse.Namespace, settings: Settings) -> int:
    service = _make_service(settings)
    _print_json(service.status())
    return 0


def cmd_grant_role(args: argparse.Namespace, settings: Settings) -> int:
    service = _make_service(settings)
    role = parse_role(args.role)
    if service.grant_role(args.principal_as, role, args.principal):
        print(f"Granted {role.value} to {args.principal}")
    else:
        print(f"{args.principal} already holds {role.value}")
    return 0


def cmd_revoke_role(args: argparse.Namespace, settings: Settings) -> int:
    service = _make_service(settings)
    role = parse_role(args.role)
    if service.revoke_role(args.principal_as, role, args.principal):
        print(f"Revoked {role.value} from {args.principal}")
    else:
        print(f"{args.principal} does not hold {role.value}")
    return 0


def cmd_set_priors(args: argparse.Namespace, settings: Settings) -> int:
    service = _make_service(settings)
    model = service.set_priors(args.principal_as, args.f1, args.f2)
    print(f"Priors set to ({args.f1}, {args.f2}); model revision {model.revision}")
    return 0


def cmd_set_cpt(args: argparse.Namespace, settings: Settings) -> int:
    service = _make_service(settings)
    model = service.set_cpt(args.principal_as, args.node, *args.cpt)
    print(f"CPT for node {args.node} set; model revision {model.revision}")
    return 0


def cmd_create_shipment(args: argparse.Namespace, settings: Settings) -> int:
    service = _make_service(settings)
    shipment_id = service.create_shipment(args.principal_as, args.carrier, args.amount)
    print(f"Created shipment: {shipment_id}")
    return 0


def cmd_submit_evidence(args: argparse.Namespace, settings: Settings) -> int:
    service = _make_service(settings)
    service.submit_evidence(args.principal_as, args.shipment, args.node, args.value)
    print(f"Recorded E{args.node}={args.value} for shipment {args.shipment}")
    return 0


def cmd_validate_and_pay(args: argparse.Namespace, settings: Settings) -> int:
    service = _make_service(settings)
    receipt = service.validate_and_pay(args.principal_as, args.shipment)
    _print_json(receipt.to_dict())
    return 0


def cmd_show_shipment(args: argparse.Namespace, settings: Settings) -> int:
    service = _make_service(settings)
    shipment = service.get_shipment(args.shipment)
    if shipment is None:
        print(f"Failed: Unknown shipment: {args.shipment}", file=sys.stderr)
        return 1
    data = shipment.to_dict()
    data["escrow_held"] = service.escrow_held(args.shipment)
    receipt = service.get_receipt(args.shipment)
    data["receipt_hash"] = receipt.receipt_hash if receipt else None
    _print_json(data)
    return 0


def cmd_infer(args: argparse.Namespace, settings: Settings) -> int:
    """Posterior for an evidence vector under the current model. No state change."""
    service = _make_service(settings)
    trace = service.infer(args.evidence)
    _print_json(trace.to_dict())
    return 0


def cmd_verify_receipt(args: argparse.Namespace, settings: Settings) -> int:
    if args.file is not None:
        receipt = SettlementReceipt.from_dict(
            json.loads(args.file.read_text(encoding="utf-8"))
        )
    else:
        service = _make_service(settings)
        found = service.get_receipt(args.shipment)
        if found is None:
            print(f"Failed: No receipt for shipment {args.shipment}", file=sys.stderr)
            return 1
        receipt = found
    errors = verify_receipt(receipt)
    if errors:
        for error in errors:
            print(f"FAIL: {error}", file=sys.stderr)
        return 1
    print(f"Receipt for shipment {receipt.shipment_id} verified: {receipt.receipt_hash}")
    return 0


def cmd_anchor_receipt(args: argparse.Namespace, settings: Settings) -> int:
    """Anchor a settlement receipt hash on an Ethereum chain."""
    if not settings.rpc_url or not settings.private_key:
        print(
            "Failed: COLDCHAIN_RPC_URL and COLDCHAIN_PRIVATE_KEY must be set",
            file=sys.stderr,
        )
        return 1
    service = _make_service(settings)
    receipt = service.get_receipt(args.shipment)
    if receipt is None:
        print(f"Failed: No receipt for shipment {args.shipment}", file=sys.stderr)
        return 1
    record = anchor_to_chain(
        receipt.receipt_hash,
        settings.rpc_url,
        settings.private_key,
        chain_id=settings.chain_id,
    )
    _print_json(dataclasses.asdict(record))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="coldchain",
        description="Cold-chain compliance engine CLI",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Directory holding the event log (default: $COLDCHAIN_DATA_DIR or data/)",
    )
    parser.add_argument(
        "--as",
        dest="principal_as",
        default=None,
        help="Principal performing the command (default: the configured admin)",
    )
    sub = parser.add_subparsers(dest="command")

    # status
    sub.add_parser("status", help="Show system status")

    # grant-role / revoke-role
    for name, help_text in (
        ("grant-role", "Grant a role to a principal"),
        ("revoke-role", "Revoke a role from a principal"),
    ):
        p_role = sub.add_parser(name, help=help_text)
        p_role.add_argument("--role", required=True, help="admin, operator, sensor or sender")
        p_role.add_argument("--principal", required=True, help="Principal ID")

    # set-priors
    p_priors = sub.add_parser("set-priors", help="Set P(F1=true) and P(F2=true)")
    p_priors.add_argument("--f1", type=int, required=True, help="Prior for F1 (0-100)")
    p_priors.add_argument("--f2", type=int, required=True, help="Prior for F2 (0-100)")

    # set-cpt
    p_cpt = sub.add_parser("set-cpt", help="Set the CPT of one evidence node")
    p_cpt.add_argument("--node", type=int, required=True, choices=list(NODE_IDS))
    p_cpt.add_argument(
        "--cpt", type=int, nargs=4, required=True,
        metavar=("FF", "FT", "TF", "TT"),
        help="P(node=true) for (F1,F2) = FF, FT, TF, TT",
    )

    # create-shipment
    p_ship = sub.add_parser("create-shipment", help="Create a shipment and escrow funds")
    p_ship.add_argument("--carrier", required=True, help="Carrier principal")
    p_ship.add_argument("--amount", type=int, required=True, help="Escrow amount")

    # submit-evidence
    p_ev = sub.add_parser("submit-evidence", help="Submit one sensor reading")
    p_ev.add_argument("--shipment", type=int, required=True, help="Shipment ID")
    p_ev.add_argument("--node", type=int, required=True, help="Evidence node (1-5)")
    p_ev.add_argument("--value", type=parse_bool, required=True, help="true or false")

    # validate-and-pay
    p_pay = sub.add_parser("validate-and-pay", help="Settle a shipment as its carrier")
    p_pay.add_argument("--shipment", type=int, required=True, help="Shipment ID")

    # show-shipment
    p_show = sub.add_parser("show-shipment", help="Show a shipment")
    p_show.add_argument("--shipment", type=int, required=True, help="Shipment ID")

    # infer
    p_infer = sub.add_parser("infer", help="Compute posteriors for an evidence vector")
    p_infer.add_argument(
        "--evidence", type=parse_bool, nargs=len(NODE_IDS), required=True,
        metavar="E", help="Five values, E1..E5",
    )

    # verify-receipt
    p_verify = sub.add_parser("verify-receipt", help="Re-derive a settlement receipt")
    source = p_verify.add_mutually_exclusive_group(required=True)
    source.add_argument("--shipment", type=int, help="Shipment ID")
    source.add_argument("--file", type=Path, help="Receipt JSON file")

    # anchor-receipt
    p_anchor = sub.add_parser("anchor-receipt", help="Anchor a receipt hash on-chain")
    p_anchor.add_argument("--shipment", type=int, required=True, help="Shipment ID")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    settings = Settings.from_env()
    if args.data_dir is not None:
        settings = dataclasses.replace(settings, data_dir=args.data_dir)
    if args.principal_as is None:
        args.principal_as = settings.admin
    configure_logging(settings.log_level, json_format=settings.log_json)

    commands = {
        "status": cmd_status,
        "grant-role": cmd_grant_role,
        "revoke-role": cmd_revoke_role,
        "set-priors": cmd_set_priors,
        "set-cpt": cmd_set_cpt,
        "create-shipment": cmd_create_shipment,
        "submit-evidence": cmd_submit_evidence,
        "validate-and-pay": cmd_validate_and_pay,
        "show-shipment": cmd_show_shipment,
        "infer": cmd_infer,
        "verify-receipt": cmd_verify_receipt,
        "anchor-receipt": cmd_anchor_receipt,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        return handler(args, settings)
    except (ColdchainError, json.JSONDecodeError, OSError) as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
