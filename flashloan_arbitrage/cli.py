"""
Command line entry point.

Usage:
    python -m flashloan_arbitrage --config configs/arbitrage.yaml
    python -m flashloan_arbitrage --config configs/arbitrage.yaml --paper --once
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Dict, List, Optional

from eth_account import Account

from . import logging_config
from .chain_reader import Web3ChainReader
from .config_loader import load_bot_config, resolve_secret
from .config_schema import BotConfig
from .exceptions import ConfigurationError, FlashArbitrageError
from .interfaces import ChainReader, RelayClient
from .metrics import ArbitrageMetrics
from .pipeline import build_orchestrator
from .relay import FlashbotsRelayClient
from .signer import LocalAccountSigner

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Flash-loan arbitrage scanner and bundle executor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Paper run against simulated chains
  python -m flashloan_arbitrage --config configs/arbitrage.yaml --paper

  # Single live scan and execution pass
  python -m flashloan_arbitrage --config configs/arbitrage.yaml --once
        """,
    )
    parser.add_argument(
        "--config",
        default="configs/arbitrage.yaml",
        help="Path to config YAML file (default: configs/arbitrage.yaml)",
    )
    parser.add_argument(
        "--once", action="store_true", help="Run a single scan/execute pass and exit"
    )
    parser.add_argument(
        "--paper",
        action="store_true",
        help="Use the simulation harness instead of live chains and relays",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override observability.log_level",
    )
    parser.add_argument("--env-file", help="Path to .env file with secrets")
    return parser.parse_args(argv)


def _live_components(config: BotConfig):
    readers: Dict[int, ChainReader] = {
        chain.chain_id: Web3ChainReader.from_config(
            chain, request_timeout=config.relay.request_timeout_seconds
        )
        for chain in config.chains
    }
    signer = LocalAccountSigner.from_env(config.signer.private_key_env)
    auth_account = Account.from_key(resolve_secret(config.relay.auth_key_env))
    relays: Dict[int, RelayClient] = {
        chain.chain_id: FlashbotsRelayClient(
            chain.relay_url or config.relay.url,
            auth_account,
            readers[chain.chain_id],
            grace_blocks=config.relay.grace_blocks,
            request_timeout=config.relay.request_timeout_seconds,
        )
        for chain in config.chains
    }
    return readers, signer, relays


def _paper_components(config: BotConfig):
    from .paper import PaperChainReader, PaperRelayClient

    readers: Dict[int, ChainReader] = {
        chain.chain_id: PaperChainReader(chain, seed=chain.chain_id)
        for chain in config.chains
    }
    signer = LocalAccountSigner(Account.create())
    relays: Dict[int, RelayClient] = {
        chain.chain_id: PaperRelayClient(seed=chain.chain_id) for chain in config.chains
    }
    logger.warning("PAPER MODE: simulated prices, bundles are never broadcast")
    return readers, signer, relays


async def run(config: BotConfig, paper: bool, once: bool) -> int:
    if paper:
        readers, signer, relays = _paper_components(config)
    else:
        readers, signer, relays = _live_components(config)

    metrics = None
    if config.observability.metrics_enabled:
        metrics = ArbitrageMetrics()
        await metrics.start_server(port=config.observability.metrics_port)

    orchestrator = build_orchestrator(config, readers, signer, relays, metrics=metrics)

    try:
        if once:
            result = await orchestrator.run_once()
            logger.info(f"Single pass finished: {result.outcome if result else 'no execution'}")
        else:
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.add_signal_handler(sig, orchestrator.stop)
                except NotImplementedError:
                    pass
            await orchestrator.run()
    finally:
        for relay in relays.values():
            close = getattr(relay, "close", None)
            if close is not None:
                await close()
        if metrics is not None:
            await metrics.stop_server()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    args = parse_args(argv)

    try:
        config = load_bot_config(args.config, env_file=args.env_file)
    except ConfigurationError as e:
        print(f"Config error: {e}", file=sys.stderr)
        for error in e.details.get("errors", []):
            print(f"  {error.get('loc')}: {error.get('msg')}", file=sys.stderr)
        return 1

    level = args.log_level or config.observability.log_level
    if level == "DEBUG":
        logging_config.setup_debug()
    else:
        logging_config.setup(getattr(logging, level))

    try:
        return asyncio.run(run(config, paper=args.paper, once=args.once))
    except KeyboardInterrupt:
        logger.info("Stopped by user")
        return 0
    except FlashArbitrageError as e:
        logger.error(f"Fatal: {e}")
        return 1
