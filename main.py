from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

from dotenv import load_dotenv

from modules.common import EngineError, ValidationError, guarded_call, log_event
from modules.runtime import AppSettings, EngineContext, setup_logger
from modules.service import TxEventService
from modules.storage import LoggingStore, StorageGateway, StorageSettings


def _non_negative_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as error:
        raise argparse.ArgumentTypeError(f"expected an integer, got {value!r}") from error
    if parsed < 0:
        raise argparse.ArgumentTypeError(f"expected a non-negative integer, got {value!r}")
    return parsed


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Vault transaction events and admin swap orchestration.",
    )
    parser.add_argument(
        "--no-storage",
        action="store_true",
        help="Run without Firestore/Redis; collaborator writes are only logged.",
    )
    parser.add_argument("--env-file", default=None, help="Optional .env file to load.")
    commands = parser.add_subparsers(dest="command", required=True)

    swap = commands.add_parser("swap", help="Swap a vault's stablecoin reserve into its underlying assets.")
    swap.add_argument("--vault-index", type=_non_negative_int, required=True)
    swap.add_argument("--amount", type=_non_negative_int, required=True, help="Raw stablecoin amount.")

    redeem = commands.add_parser("redeem-swap", help="Swap underlying assets back to cover a redemption.")
    redeem.add_argument("--vault-index", type=_non_negative_int, required=True)
    redeem.add_argument("--shares", type=_non_negative_int, required=True, help="Raw vault share amount.")
    redeem.add_argument("--share-price", type=_non_negative_int, required=True, help="Raw share price (1e6).")

    for name, help_text in (
        ("decode-tx", "Decode every program event in a transaction."),
        ("decode-fees", "Apply FactoryFeesUpdated events from a transaction to the fee schedule."),
        ("read-vault-creation", "Read a vault creation record from transaction logs."),
        ("process-deposit", "Register a deposit found in transaction logs."),
        ("process-redeem", "Register a redeem found in transaction logs."),
    ):
        command = commands.add_parser(name, help=help_text)
        command.add_argument("signature")

    return parser.parse_args(argv)


def _to_jsonable(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, list):
        return [_to_jsonable(item) for item in value]
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return value


async def run_command(service: TxEventService, args: argparse.Namespace) -> Any:
    if args.command == "swap":
        return await service.execute_admin_swap(args.vault_index, args.amount)
    if args.command == "redeem-swap":
        return await service.execute_redeem_swap_admin(args.vault_index, args.shares, args.share_price)
    if args.command == "decode-tx":
        return await service.decode_transaction(args.signature)
    if args.command == "decode-fees":
        return await service.decode_factory_fees_event(args.signature)
    if args.command == "read-vault-creation":
        return await service.read_vault_creation(args.signature)
    if args.command == "process-deposit":
        return await service.process_deposit_transaction(args.signature)
    if args.command == "process-redeem":
        return await service.process_redeem_transaction(args.signature)
    raise ValidationError(f"Unknown command: {args.command}")


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    load_dotenv(args.env_file)

    app_settings = AppSettings.from_env()
    logger = setup_logger(app_settings.log_level)

    store: StorageGateway | LoggingStore
    if args.no_storage:
        store = LoggingStore(logger)
    else:
        store = StorageGateway(StorageSettings.from_env(), logger)

    context: EngineContext | None = None
    try:
        await store.connect()
        context = EngineContext.create(settings=app_settings, logger=logger, store=store)
        await context.rpc.connect()
        await context.jupiter.connect()
        result = await run_command(TxEventService(context), args)
    except ValidationError as error:
        log_event(logger, level="error", event="command_rejected", message=str(error), command=args.command)
        print(json.dumps({"error": str(error), "type": type(error).__name__}))
        return 2
    except EngineError as error:
        log_event(logger, level="error", event="command_failed", message=str(error), command=args.command)
        print(json.dumps({"error": str(error), "type": type(error).__name__}))
        return 1
    finally:
        if context is not None:
            await guarded_call(
                context.close,
                logger=logger,
                event="engine_close_failed",
                message="Failed to close engine clients",
            )
        await guarded_call(
            store.close,
            logger=logger,
            event="storage_close_failed",
            message="Failed to close storage",
        )
        logger.debug("Shutdown completed", extra={"event": "shutdown_completed"})

    print(json.dumps(_to_jsonable(result), ensure_ascii=False, indent=2, default=str))
    return 0


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
