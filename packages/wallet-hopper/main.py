#!/usr/bin/env python3
"""Command line entry point for the Wallet Hopper payment engine.

Checks proposed payments against the recipient's published settlement
preferences, executes the suggested remediation (swap, bridge or privacy
direct deposit) and publishes a recipient's own preference document.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path

# Configure logging before any other imports create loggers
def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_level: int = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

# Get logger for this module
logger = logging.getLogger(__name__)

from src.wallet_hopper.chain_context import ChainContextResolver
from src.wallet_hopper.compliance import ComplianceResolver
from src.wallet_hopper.config import WalletHopperConfig
from src.wallet_hopper.errors import WalletHopperError
from src.wallet_hopper.models import ComplianceStatus, PaymentIntent, PipelineEvent, PipelineState
from src.wallet_hopper.preference_store import PreferenceStoreClient
from src.wallet_hopper.publication import PublicationPipeline
from src.wallet_hopper.remediation import RemediationExecutor, RemediationPlanner
from src.wallet_hopper.transaction_pipeline import ReceiptPoller
from src.wallet_hopper.utils.swap_quote import SwapQuoteClient
from src.wallet_hopper.utils.wallet import Web3Wallet, WalletActor


@dataclass
class Engine:
    """All engine components wired to one wallet."""
    wallet: WalletActor
    resolver: ChainContextResolver
    compliance: ComplianceResolver
    executor: RemediationExecutor
    publication: PublicationPipeline


def log_event(event: PipelineEvent) -> None:
    """Render pipeline stage transitions for the terminal."""
    if event.state in (PipelineState.FAILED, PipelineState.TIMED_OUT):
        logger.error(f"✗ {event.message}")
    else:
        logger.info(event.message)


def build_engine(config: WalletHopperConfig) -> Engine:
    wallet = WalletActor(Web3Wallet.from_key(config.chain.rpc_url, config.local_private_key))
    resolver = ChainContextResolver(wallet, config.chain.pointer_registry_addresses)
    store = PreferenceStoreClient(
        config.services.preference_lookup_url,
        config.services.storage_url,
        timeout=config.services.request_timeout,
    )
    quote_client = SwapQuoteClient(
        config.services.swap_quote_url,
        api_key=config.services.swap_api_key,
        slippage=config.services.swap_slippage,
        timeout=config.services.request_timeout,
    )
    poller = ReceiptPoller(wallet, config.confirmation)

    return Engine(
        wallet=wallet,
        resolver=resolver,
        compliance=ComplianceResolver(resolver, store, RemediationPlanner(quote_client)),
        executor=RemediationExecutor(wallet, resolver, quote_client, poller, notifier=log_event),
        publication=PublicationPipeline(resolver, store, wallet, poller, notifier=log_event),
    )


def emit(payload: dict) -> None:
    print(json.dumps(payload, indent=2))


async def run_command(args: argparse.Namespace, engine: Engine) -> int:
    """Run one subcommand and return the process exit code."""
    match args.command:
        case "check" | "remediate" | "send":
            intent = PaymentIntent(destination_address=args.to, asset=args.asset, amount=args.amount)
            result = await engine.compliance.evaluate(intent)
            logger.info(result.description)
            report = {
                "status": result.status.value,
                "reason": result.reason.value if result.reason else None,
                "suggestion": result.description,
                "action": result.action_text,
            }

            if args.command == "check":
                emit(report)
                return 0

            if args.command == "remediate":
                if result.action is None:
                    logger.info("Nothing to remediate")
                    emit(report)
                    return 0
                handles = await engine.executor.execute(result.action)
                report["transactions"] = [handle.hash for handle in handles]
                emit(report)
                return 0

            if result.status is ComplianceStatus.NON_COMPLIANT and not args.force:
                logger.error("Recipient does not accept this payment as-is; use 'remediate' or --force")
                emit(report)
                return 1
            handle = await engine.executor.send_direct(intent)
            context = await engine.resolver.resolve()
            report["transactions"] = [handle.hash]
            report["explorer_url"] = context.explorer_tx_url(handle.hash)
            emit(report)
            return 0

        case "draft":
            document = await engine.publication.draft(args.address)
            emit(document.to_dict())
            return 0

        case "publish":
            text = Path(args.file).read_text() if args.file != "-" else sys.stdin.read()
            published = await engine.publication.publish(text)
            emit({
                "cid": published.content_handle.cid,
                "locator": published.content_handle.locator,
                "transaction": published.transaction.hash,
                "explorer_url": published.explorer_url,
            })
            return 0

    raise ValueError(f"Unknown command: {args.command}")


def build_parser() -> argparse.ArgumentParser:
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Wallet Hopper - check payments against recipient preferences and remediate them",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  RPC_URL                    - RPC endpoint of the payer's chain (default: https://polygon-rpc.com)
  LOCAL_PRIVATE_KEY          - Signing key of the payer/recipient wallet
  POINTER_REGISTRY_ADDRESSES - Pointer registry per chain, e.g. 137:0x..,1:0x..
  PREFERENCE_LOOKUP_URL      - Preference lookup service
  STORAGE_URL                - Durable storage service
  SWAP_QUOTE_URL             - Swap aggregator API root (default: https://api.1inch.io/v5.2)
  SWAP_API_KEY               - Swap aggregator API key
  POLL_INTERVAL              - Receipt polling interval (default: 3)
  CONFIRMATION_TIMEOUT       - Give up waiting for receipts after N seconds (default: never)
  LOG_LEVEL                  - Logging level (can be overridden with --log-level)
        """
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: INFO)"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("check", "Check a payment against the recipient's preferences"),
        ("remediate", "Check a payment and execute the suggested remediation"),
        ("send", "Send a payment as-is"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--to", required=True, help="Recipient address")
        sub.add_argument("--asset", required=True, help="Asset symbol, e.g. USDC")
        sub.add_argument("--amount", required=True, help="Amount, e.g. 12.5")
        if name == "send":
            sub.add_argument(
                "--force", action="store_true", default=False,
                help="Send even if the recipient prefers another asset or chain"
            )

    draft = subparsers.add_parser("draft", help="Print the preference document to edit")
    draft.add_argument("--address", default=None, help="Address to load (default: wallet address)")

    publish = subparsers.add_parser("publish", help="Store a preference document and anchor it on-chain")
    publish.add_argument("--file", required=True, help="JSON document path, or - for stdin")

    return parser


async def main() -> None:
    """Main entry point for the Wallet Hopper CLI.

    Raises:
        SystemExit: With the command's exit code
    """
    args: argparse.Namespace = build_parser().parse_args()
    setup_logging(args.log_level)

    engine: Engine | None = None
    try:
        config: WalletHopperConfig = WalletHopperConfig.from_env()
        config.log_config()
        engine = build_engine(config)
        exit_code = await run_command(args, engine)

    except WalletHopperError as e:
        logger.error(f"✗ {type(e).__name__}: {e}")
        logger.debug("Failure details", exc_info=True)
        exit_code = 1

    except ValueError as e:
        logger.error(f"Configuration Error: {e}")
        logger.error("Please check your input and environment variables:")
        logger.error("  - RPC_URL: RPC endpoint of the payer's chain")
        logger.error("  - LOCAL_PRIVATE_KEY: Signing key (0x-prefixed hex)")
        logger.error("  - POINTER_REGISTRY_ADDRESSES: chainId:address pairs")
        logger.error("  - SWAP_SLIPPAGE / REQUEST_TIMEOUT / POLL_*: numeric settings")
        exit_code = 1

    except KeyboardInterrupt:
        logger.info("\nReceived interrupt signal, shutting down...")
        exit_code = 0

    except Exception as e:
        logger.error(f"Fatal Error: {e}", exc_info=True)
        exit_code = 1

    finally:
        if engine is not None:
            await engine.wallet.stop()

    sys.exit(exit_code)


if __name__ == "__main__":
    # Run the main async function
    asyncio.run(main())
