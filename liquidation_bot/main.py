from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from contextlib import suppress

from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3

from liquidation_bot.cancellation import CancellationToken
from liquidation_bot.config import BotSettings, load_settings
from liquidation_bot.directory import PositionDirectory
from liquidation_bot.errors import ConfigError, RelayError, StartupError, SubmissionError
from liquidation_bot.engine import LiquidationEngine
from liquidation_bot.events import EventSink, LoggingEventSink
from liquidation_bot.executor import LiquidationExecutor
from liquidation_bot.kill_switch import SubmissionGuard
from liquidation_bot.ledger import CometLedger
from liquidation_bot.liquidator import FlashLiquidator, FlashLiquidatorV2, Liquidator
from liquidation_bot.logging_setup import configure_logging
from liquidation_bot.scanner import SolvencyScanner
from liquidation_bot.submitters import build_submitter
from liquidation_bot.swap_quotes import SwapQuoteClient
from liquidation_bot.valuator import CollateralValuator

LOGGER = logging.getLogger(__name__)

EXIT_STARTUP_FAILURE = 2


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Flash-loan liquidation and collateral arbitrage bot for Comet markets",
    )
    commands = parser.add_subparsers(dest="command")

    run = commands.add_parser("run", help="Run the liquidation loop (default)")
    run.add_argument(
        "--once",
        action="store_true",
        help="Run a single iteration and exit",
    )
    run.add_argument(
        "--iterations",
        type=int,
        default=None,
        help="Stop after N iterations",
    )

    config = commands.add_parser(
        "set-asset-config",
        help="Set the per-asset purchase limit on the v2 liquidator (admin only)",
    )
    config.add_argument("--asset", required=True, help="Collateral asset address")
    config.add_argument(
        "--max-collateral",
        type=int,
        required=True,
        help="Max collateral to purchase per call, in the asset's native units",
    )
    enabled = config.add_mutually_exclusive_group()
    enabled.add_argument("--enabled", dest="enabled", action="store_true", default=True)
    enabled.add_argument(
        "--disabled",
        dest="enabled",
        action="store_false",
        help="clear the cap; the asset is bought up to its full reserve",
    )

    args = parser.parse_args(argv)
    if args.command is None:
        args.command = "run"
        args.once = False
        args.iterations = None
    return args


async def connect(settings: BotSettings) -> AsyncWeb3:
    w3 = AsyncWeb3(
        AsyncHTTPProvider(
            settings.chain.rpc_url,
            request_kwargs={"timeout": settings.chain.rpc_timeout_seconds},
        )
    )
    if not await w3.is_connected():
        await w3.provider.disconnect()
        raise StartupError(f"cannot reach RPC endpoint {settings.chain.rpc_url}")
    return w3


async def resolve_sender(w3: AsyncWeb3, settings: BotSettings) -> str:
    if settings.submission.private_key:
        return Account.from_key(settings.submission.private_key).address
    accounts = await w3.eth.accounts
    if not accounts:
        raise StartupError("no ETH_PK configured and the node exposes no accounts")
    return accounts[0]


async def build_liquidator(
    settings: BotSettings,
    w3: AsyncWeb3,
    ledger: CometLedger,
    sender: str,
) -> tuple[Liquidator, SwapQuoteClient | None]:
    chain = settings.chain
    if chain.liquidator_version == "v1":
        liquidator = FlashLiquidator(
            w3,
            chain.liquidator_address,
            chain.comet_address,
            sender,
            gas_multiplier=settings.submission.gas_multiplier,
        )
        return liquidator, None

    chain_id = chain.chain_id or await w3.eth.chain_id
    quotes = SwapQuoteClient(
        settings.swap.api_url,
        chain_id,
        slippage_pct=settings.swap.slippage_pct,
        timeout_seconds=settings.swap.timeout_seconds,
    )
    liquidator = FlashLiquidatorV2(
        w3,
        chain.liquidator_address,
        chain.comet_address,
        sender,
        ledger=ledger,
        quotes=quotes,
        min_base_value=settings.swap.min_base_value,
        gas_multiplier=settings.submission.gas_multiplier,
    )
    return liquidator, quotes


async def build_engine(
    settings: BotSettings,
    w3: AsyncWeb3,
    token: CancellationToken,
    sink: EventSink,
) -> LiquidationEngine:
    sender = await resolve_sender(w3, settings)
    ledger = CometLedger(w3, settings.chain.comet_address)
    liquidator, quotes = await build_liquidator(settings, w3, ledger, sender)
    submitter = build_submitter(settings.submission, w3, token)
    read_timeout = settings.chain.rpc_timeout_seconds

    directory = PositionDirectory(
        ledger,
        token=token,
        sink=sink,
        start_block=settings.chain.event_start_block,
        chunk_size=settings.chain.log_chunk_size,
        read_timeout=read_timeout,
    )
    executor = LiquidationExecutor(
        SolvencyScanner(ledger, token=token, sink=sink, read_timeout=read_timeout),
        CollateralValuator(ledger, token=token, sink=sink, read_timeout=read_timeout),
        liquidator,
        submitter,
        settings.flash_loan_pool,
        token=token,
        sink=sink,
        guard=SubmissionGuard.from_settings(settings.guard),
        min_arbitrage_usd=settings.loop.min_arbitrage_usd,
        batch_accounts=settings.loop.batch_accounts,
        build_timeout=settings.submission.submission_timeout_seconds,
    )
    closers = [submitter.aclose, w3.provider.disconnect]
    if quotes is not None:
        closers.append(quotes.aclose)

    LOGGER.info(
        "liquidator network=%s deployment=%s comet=%s liquidator=%s/%s sender=%s strategy=%s batch=%s",
        settings.chain.network,
        settings.chain.deployment,
        settings.chain.comet_address,
        settings.chain.liquidator_address,
        settings.chain.liquidator_version,
        sender,
        submitter.strategy,
        settings.loop.batch_accounts,
    )
    return LiquidationEngine(
        directory,
        executor,
        token=token,
        sink=sink,
        delay_seconds=settings.loop.delay_seconds,
        refresh_every=settings.loop.refresh_every_iterations,
        closers=closers,
    )


def _install_signal_handlers(token: CancellationToken) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on every platform (e.g. Windows event loops).
        with suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, token.cancel, sig.name)


async def _run_loop(args: argparse.Namespace, settings: BotSettings) -> int:
    token = CancellationToken()
    _install_signal_handlers(token)
    w3 = await connect(settings)
    try:
        engine = await build_engine(settings, w3, token, LoggingEventSink())
    except Exception:
        await w3.provider.disconnect()
        raise

    max_iterations = 1 if args.once else args.iterations
    await engine.run_forever(max_iterations=max_iterations)
    return 0


async def _set_asset_config(args: argparse.Namespace, settings: BotSettings) -> int:
    if settings.chain.liquidator_version != "v2":
        raise ConfigError("set-asset-config needs LIQ_LIQUIDATOR_VERSION=v2")

    token = CancellationToken()
    w3 = await connect(settings)
    try:
        return await _submit_asset_config(args, settings, w3, token)
    finally:
        await w3.provider.disconnect()


async def _submit_asset_config(
    args: argparse.Namespace,
    settings: BotSettings,
    w3: AsyncWeb3,
    token: CancellationToken,
) -> int:
    sender = await resolve_sender(w3, settings)
    ledger = CometLedger(w3, settings.chain.comet_address)
    liquidator, quotes = await build_liquidator(settings, w3, ledger, sender)
    if not isinstance(liquidator, FlashLiquidatorV2):
        raise ConfigError("set-asset-config needs the v2 liquidator")
    submitter = build_submitter(settings.submission, w3, token)
    try:
        try:
            request = await liquidator.set_asset_config(args.asset, args.max_collateral, args.enabled)
            result = await submitter.submit(request)
        except (SubmissionError, RelayError) as exc:
            LOGGER.error("setAssetConfig rejected: %s", exc)
            return 1
        config = await liquidator.asset_config(args.asset)
        LOGGER.info(
            "setAssetConfig outcome=%s tx=%s asset=%s max_collateral=%d is_set=%s",
            result.outcome.value,
            result.tx_hash,
            args.asset,
            config.max_collateral_to_purchase,
            config.is_set,
        )
        return 0 if result.succeeded else 1
    finally:
        await submitter.aclose()
        if quotes is not None:
            await quotes.aclose()


async def _run(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        settings = load_settings()
    except ConfigError as exc:
        configure_logging("INFO")
        LOGGER.error("configuration error: %s", exc)
        return EXIT_STARTUP_FAILURE

    configure_logging(settings.log_level, settings.log_format)
    try:
        if args.command == "set-asset-config":
            return await _set_asset_config(args, settings)
        return await _run_loop(args, settings)
    except (ConfigError, StartupError) as exc:
        LOGGER.error("startup failed: %s", exc)
        return EXIT_STARTUP_FAILURE


def cli(argv: list[str] | None = None) -> None:
    sys.exit(asyncio.run(_run(argv)))


if __name__ == "__main__":
    cli()
