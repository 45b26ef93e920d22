"""Command-line interface for locking and unlocking funds at a script address.

Each command drives the same :class:`CustodyFlowController` an interactive
front end would use: the script program is resolved, the funds at its address
are loaded, and the requested transaction is built, signed and submitted.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Sequence

from blockfrost import ApiError
from pycardano import Network
from requests import RequestException

from .codec import StructuredValue, ValueKind
from .config import ConfigurationError, CustodyConfig, load_custody_config
from .controller import CustodyFlowController, FlowState
from .errors import CustodyError
from .inventory import UTxOInventory
from .model import FundReference, PendingOperation
from .provider import BlockfrostClient, chain_context_from_config
from .script_resolver import ScriptAddressResolver, load_program
from .tx_builder import LockTransactionBuilder, UnlockTransactionBuilder
from .wallet import KeyFileWallet, payment_key_hash

logger = logging.getLogger(__name__)


class CLIError(RuntimeError):
    """Raised when CLI arguments are invalid or an operation fails."""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Plutus script custody CLI")
    parser.add_argument("--config", default=None, help="Path to a YAML config file")
    parser.add_argument(
        "--network",
        choices=["mainnet", "preprod", "preview"],
        default=None,
        help="Cardano network (default: preprod or the configured value)",
    )
    parser.add_argument(
        "--verbose", action="store_true", help="Enable debug logging"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    address_parser = subparsers.add_parser(
        "address", help="resolve the script address without contacting the network"
    )
    _add_program_arguments(address_parser)
    address_parser.add_argument(
        "--script-version",
        choices=["V1", "V2", "V3"],
        default="V3",
        help="Plutus language version (default: V3)",
    )
    address_parser.add_argument(
        "--mainnet", action="store_true", help="Derive a mainnet address instead of testnet"
    )
    address_parser.add_argument("--json", dest="as_json", action="store_true")

    utxos_parser = subparsers.add_parser("utxos", help="list the UTxOs held by the script")
    _add_program_arguments(utxos_parser)
    utxos_parser.add_argument("--json", dest="as_json", action="store_true")

    lock_parser = subparsers.add_parser("lock", help="lock lovelace at the script address")
    _add_program_arguments(lock_parser)
    _add_wallet_arguments(lock_parser)
    lock_parser.add_argument("--amount", required=True, help="Amount in lovelace")
    lock_parser.add_argument("--datum", required=True, help="Datum value")
    lock_parser.add_argument(
        "--datum-kind",
        choices=[kind.value for kind in ValueKind],
        default=ValueKind.OPAQUE.value,
        help="Datum representation (default: data)",
    )

    unlock_parser = subparsers.add_parser("unlock", help="spend one UTxO held by the script")
    _add_program_arguments(unlock_parser)
    _add_wallet_arguments(unlock_parser)
    unlock_parser.add_argument("--tx-hash", required=True, help="Hash of the UTxO's transaction")
    unlock_parser.add_argument("--index", type=int, required=True, help="Output index of the UTxO")
    unlock_parser.add_argument("--redeemer", required=True, help="Redeemer value")
    unlock_parser.add_argument(
        "--redeemer-kind",
        choices=[kind.value for kind in ValueKind],
        default=ValueKind.OPAQUE.value,
        help="Redeemer representation (default: data)",
    )

    pkh_parser = subparsers.add_parser(
        "pkh", help="print the payment key hash of the wallet change address"
    )
    _add_wallet_arguments(pkh_parser)

    return parser


def _add_program_arguments(parser: argparse.ArgumentParser) -> None:
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--script-cbor", help="Compiled script as CBOR hex")
    source.add_argument(
        "--script-file", help="File holding CBOR hex, a text envelope or a plutus.json blueprint"
    )
    parser.add_argument(
        "--validator", default=None, help="Blueprint validator title or index (default: first)"
    )


def _add_wallet_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--signing-key", default=None, help="Payment signing key file (.skey)"
    )
    parser.add_argument(
        "--yes", action="store_true", help="Sign without asking for confirmation"
    )


def _program_from_args(args: argparse.Namespace) -> str:
    if getattr(args, "script_cbor", None):
        return args.script_cbor
    return load_program(args.script_file, validator=args.validator)


def _config_from_args(args: argparse.Namespace) -> CustodyConfig:
    overrides: dict[str, Any] = {}
    if args.network:
        overrides["network"] = args.network
    if getattr(args, "signing_key", None):
        overrides["signing_key_path"] = args.signing_key
    return load_custody_config(config_path=args.config, overrides=overrides)


def _confirm_signature(tx: Any) -> bool:
    answer = input(f"Sign and submit transaction {tx.id}? [y/N] ")
    return answer.strip().lower() in {"y", "yes"}


def _wallet_from_config(config: CustodyConfig, assume_yes: bool) -> KeyFileWallet:
    if config.signing_key_path is None:
        raise CLIError(
            "A signing key is required; pass --signing-key or set CUSTODY_SIGNING_KEY"
        )
    return KeyFileWallet.from_file(
        config.signing_key_path,
        network=config.address_network,
        approve=None if assume_yes else _confirm_signature,
    )


def build_controller(
    config: CustodyConfig, wallet: Any, *, with_transactions: bool = True
) -> CustodyFlowController:
    """Wire a controller against the configured provider.

    Read-only callers pass ``with_transactions=False`` to skip the chain
    context, which fetches protocol state on construction.
    """

    provider = BlockfrostClient(config)
    lock_builder = unlock_builder = None
    if with_transactions:
        try:
            context = chain_context_from_config(config)
        except (ApiError, RequestException) as exc:
            logger.debug("Chain context setup failed", exc_info=True)
            raise CLIError(
                f"Could not reach the {config.network} provider at {config.api_url}: {exc}"
            ) from exc
        lock_builder = LockTransactionBuilder(
            context, wallet, provider, min_deposit=config.min_deposit
        )
        unlock_builder = UnlockTransactionBuilder(context, wallet, provider)
    return CustodyFlowController(
        resolver=ScriptAddressResolver(config.address_network, config.script_version),
        inventory=UTxOInventory(provider),
        lock_builder=lock_builder,
        unlock_builder=unlock_builder,
        wallet=wallet,
    )


def _require_script(state: FlowState) -> None:
    if state.script is None:
        raise CLIError(state.message or "Could not resolve the script address")
    if state.advisory:
        print(f"warning: {state.advisory}", file=sys.stderr)


def _report(outcome: PendingOperation, state: FlowState) -> None:
    if not outcome.succeeded:
        raise CLIError(outcome.reason or "Operation failed")
    print(state.message or f"Submitted {outcome.tx_hash}")
    if state.advisory:
        print(f"warning: {state.advisory}", file=sys.stderr)


def cmd_address(args: argparse.Namespace) -> None:
    resolver = ScriptAddressResolver(
        Network.MAINNET if args.mainnet else Network.TESTNET, args.script_version
    )
    script = resolver.resolve(_program_from_args(args))
    if args.as_json:
        print(
            json.dumps(
                {
                    "address": script.address,
                    "script_hash": script.script_hash,
                    "version": script.version.value,
                    "encoded_program": script.encoded_hex,
                },
                indent=2,
            )
        )
        return
    print(f"Script address: {script.address}")
    print(f"Script hash:    {script.script_hash} (Plutus {script.version.value})")


def cmd_utxos(args: argparse.Namespace) -> None:
    config = _config_from_args(args)
    controller = build_controller(
        config, KeyFileWallet(None, config.address_network), with_transactions=False
    )
    state = asyncio.run(controller.submit_program(_program_from_args(args)))
    _require_script(state)

    funds = state.funds.funds if state.funds is not None else ()
    if args.as_json:
        print(
            json.dumps(
                [
                    {
                        "reference": str(fund.reference),
                        "lovelace": fund.lovelace,
                        "assets": [
                            {"unit": asset.unit, "quantity": str(asset.quantity)}
                            for asset in fund.assets
                        ],
                        "inline_datum": fund.attached_data.hex()
                        if fund.attached_data is not None
                        else None,
                        "datum_hash": fund.datum_hash,
                    }
                    for fund in funds
                ],
                indent=2,
            )
        )
        return
    print(f"Script address: {state.script.address}")
    if not funds:
        print("No UTxOs found for the current address.")
        return
    for reference, summary in controller.fund_summaries():
        print(f"{reference:<68} {summary}")


def cmd_lock(args: argparse.Namespace) -> None:
    config = _config_from_args(args)
    wallet = _wallet_from_config(config, args.yes)
    controller = build_controller(config, wallet)
    datum = StructuredValue(ValueKind.parse(args.datum_kind), args.datum)

    async def flow() -> PendingOperation:
        state = await controller.submit_program(_program_from_args(args))
        _require_script(state)
        return await controller.lock(args.amount, datum)

    outcome = asyncio.run(flow())
    _report(outcome, controller.state)


def cmd_unlock(args: argparse.Namespace) -> None:
    config = _config_from_args(args)
    wallet = _wallet_from_config(config, args.yes)
    controller = build_controller(config, wallet)
    redeemer = StructuredValue(ValueKind.parse(args.redeemer_kind), args.redeemer)
    reference = FundReference(tx_hash=args.tx_hash.lower(), output_index=args.index)

    async def flow() -> PendingOperation:
        state = await controller.submit_program(_program_from_args(args))
        _require_script(state)
        return await controller.unlock(reference, redeemer)

    outcome = asyncio.run(flow())
    _report(outcome, controller.state)


def cmd_pkh(args: argparse.Namespace) -> None:
    config = _config_from_args(args)
    wallet = _wallet_from_config(config, assume_yes=True)
    print(payment_key_hash(wallet.get_change_address()))


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    try:
        if args.command == "address":
            cmd_address(args)
        elif args.command == "utxos":
            cmd_utxos(args)
        elif args.command == "lock":
            cmd_lock(args)
        elif args.command == "unlock":
            cmd_unlock(args)
        elif args.command == "pkh":
            cmd_pkh(args)
        else:  # pragma: no cover - argparse enforces choices
            raise CLIError(f"Unknown command: {args.command}")
    except KeyboardInterrupt:  # pragma: no cover - interactive use
        logger.info("Interrupted by user")
    except (CLIError, ConfigurationError, CustodyError) as exc:
        parser.exit(1, f"error: {exc}\n")


if __name__ == "__main__":
    main(sys.argv[1:])
