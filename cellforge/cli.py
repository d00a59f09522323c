"""Command-line interface for cellforge.

The CLI is a thin façade over the predefined instructions: it builds a
transfer (optionally balancing, signing and sending it) or inspects a
transaction already known to the node.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Sequence

from .address import AddressError
from .config import ConfigurationError, Network, load_node_config
from .errors import CellforgeError
from .fees import format_capacity
from .operation import TransactionCalculator
from .predefined import secp256k1_sighash_transfer
from .rpc_client import ChainGateway, JsonRpcGateway
from .signing import Secp256k1Key
from .skeleton import TransactionSkeleton
from .types import ckb_to_shannons, hex_decode, hex_encode

logger = logging.getLogger(__name__)

ENV_PRIVATE_KEY = "CELLFORGE_PRIVKEY"


class CLIError(RuntimeError):
    """Raised when CLI arguments are invalid."""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="cellforge transaction builder")
    parser.add_argument("--config", default=None, help="Path to a YAML config file")
    parser.add_argument(
        "--network",
        choices=[network.value for network in Network if network is not Network.FAKE],
        default=None,
        help="Network to talk to (overrides config and environment)",
    )
    parser.add_argument("--node-url", default=None, help="Node JSON-RPC endpoint")
    parser.add_argument(
        "--indexer-url", default=None, help="Indexer JSON-RPC endpoint (defaults to the node URL)"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    transfer_parser = subparsers.add_parser(
        "transfer", help="build a capacity transfer between two addresses"
    )
    transfer_parser.add_argument("--from", dest="from_address", required=True, help="Sender address")
    transfer_parser.add_argument("--to", dest="to_address", required=True, help="Receiver address")
    transfer_parser.add_argument("--ckb", required=True, help="Amount of CKB to send, e.g. 100.5")
    transfer_parser.add_argument(
        "--privkey",
        default=None,
        help=f"Hex private key of the sender (or set {ENV_PRIVATE_KEY}); "
        "without it the unbalanced transaction is printed",
    )
    transfer_parser.add_argument(
        "--fee-rate",
        type=int,
        default=0,
        help="Extra fee rate in shannons/KB on top of the pool minimum",
    )
    transfer_parser.add_argument(
        "--send", action="store_true", help="Submit the signed transaction to the node"
    )
    transfer_parser.add_argument(
        "--confirmations",
        type=int,
        default=0,
        help="Blocks to wait for after commitment when sending",
    )
    transfer_parser.add_argument(
        "--timeout", type=float, default=None, help="Seconds to wait for confirmations"
    )

    inspect_parser = subparsers.add_parser("inspect", help="show a transaction and its status")
    inspect_parser.add_argument("tx_hash", help="Transaction hash (0x-prefixed hex)")
    inspect_parser.add_argument(
        "--json", dest="as_json", action="store_true", help="Print the raw transaction JSON"
    )
    return parser


def _parse_ckb(raw: str) -> int:
    try:
        amount = Decimal(raw.strip())
    except InvalidOperation as exc:
        raise CLIError(f"invalid CKB amount: {raw}") from exc
    if amount <= 0:
        raise CLIError("CKB amount must be positive")
    return ckb_to_shannons(amount)


def _parse_hash(raw: str) -> bytes:
    try:
        value = hex_decode(raw.strip())
    except ValueError as exc:
        raise CLIError(f"invalid transaction hash: {raw}") from exc
    if len(value) != 32:
        raise CLIError("transaction hash must be 32 bytes")
    return value


def gateway_from_args(args: argparse.Namespace) -> ChainGateway:
    overrides: Dict[str, Any] = {}
    if args.network:
        overrides["network"] = args.network
    if args.node_url:
        overrides["node_url"] = args.node_url
    if args.indexer_url:
        overrides["indexer_url"] = args.indexer_url
    config = load_node_config(config_path=args.config, overrides=overrides)
    logger.debug("Using %s node at %s", config.network.value, config.node_url)
    return JsonRpcGateway(config)


def cmd_transfer(args: argparse.Namespace, gateway: ChainGateway) -> None:
    capacity = _parse_ckb(args.ckb)
    raw_key = args.privkey or os.environ.get(ENV_PRIVATE_KEY)
    key = Secp256k1Key.from_hex(raw_key) if raw_key else None
    if args.send and key is None:
        raise CLIError("--send requires --privkey (or the environment key) to sign")

    instruction = secp256k1_sighash_transfer(
        args.from_address, args.to_address, capacity, args.fee_rate, key
    )
    skeleton, _ = TransactionCalculator().instruction(instruction).new_skeleton(gateway)
    if not args.send:
        print(skeleton.to_json())
        return
    tx_hash = skeleton.submit_and_await(gateway, args.confirmations, args.timeout)
    print(f"Transaction hash: {hex_encode(tx_hash)}")


def cmd_inspect(args: argparse.Namespace, gateway: ChainGateway) -> None:
    tx_hash = _parse_hash(args.tx_hash)
    result = gateway.get_transaction(tx_hash)
    if result is None:
        print("Transaction not found.")
        return
    status = result.tx_status
    print(f"Status: {status.status}")
    if status.block_number is not None:
        print(f"Block: {status.block_number}")
    if status.reason:
        print(f"Reason: {status.reason}")
    if result.transaction is None:
        return
    if args.as_json:
        print(json.dumps(result.transaction.rpc(), indent=2))
        return
    raw = result.transaction.raw
    print(
        f"Inputs: {len(raw.inputs)} | Outputs: {len(raw.outputs)} | "
        f"Cell deps: {len(raw.cell_deps)} | Header deps: {len(raw.header_deps)}"
    )
    for index, output in enumerate(raw.outputs):
        type_hash = hex_encode(output.type.hash()) if output.type is not None else "-"
        print(
            f"{index:>3} | {format_capacity(output.capacity):>24} | "
            f"lock {hex_encode(output.lock.hash())} | type {type_hash}"
        )
    if status.status != "committed":
        skeleton = TransactionSkeleton.from_transaction(gateway, result.transaction)
        print(f"Fee: {format_capacity(skeleton.exceeded_capacity())}")


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    try:
        gateway = gateway_from_args(args)
        if args.command == "transfer":
            cmd_transfer(args, gateway)
        elif args.command == "inspect":
            cmd_inspect(args, gateway)
        else:  # pragma: no cover - argparse enforces choices
            raise CLIError(f"Unknown command: {args.command}")
    except KeyboardInterrupt:  # pragma: no cover - interactive use
        logger.info("Interrupted by user")
    except (CLIError, ConfigurationError, AddressError, CellforgeError, ValueError) as exc:
        parser.exit(1, f"error: {exc}\n")


if __name__ == "__main__":
    main(sys.argv[1:])
