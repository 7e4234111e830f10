#!/usr/bin/env python3
"""
CLI entry point for the Market Screening Pipeline.

Usage:
    python scripts/run_scanner.py --once                   # Single run
    python scripts/run_scanner.py --interval 300           # Poll every 5 minutes
    python scripts/run_scanner.py --once --dry-run         # No file writes
    python scripts/run_scanner.py --once --classes crypto
    python scripts/run_scanner.py --once --signals-file data/signals.json
    python scripts/run_scanner.py --reset-ledger --once

Environment Variables:
    COINGECKO_API_KEY: CoinGecko demo API key (optional)
    DISCORD_WEBHOOK_URL: Webhook for new-alert summaries (optional)
    SCANNER_*: Config overrides (see scanner/config.py)
"""

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional

# Ensure project root is on sys.path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config.settings import get_coingecko_key, load_config
from scanner.config import ScannerConfig
from scanner.ledger import AlertLedger
from scanner.models import ASSET_CLASSES, CRYPTO, EQUITIES
from scanner.notifier import AlertNotifier
from scanner.orchestrator import ScanOrchestrator
from scanner.snapshot import SnapshotWriter
from scanner.sources import (
    CoinGeckoMarketSource,
    CompositeMarketSource,
    NullSignalSource,
    StaticSignalSource,
    YahooChartSource,
)

logger = logging.getLogger('scanner.cli')


def setup_logging(level: str = 'INFO', log_file: Optional[str] = None) -> None:
    """Configure logging for the scanner."""
    handlers = [logging.StreamHandler()]

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, mode='a'))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s | %(levelname)s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=handlers,
    )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Market Screening Pipeline')
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument('--once', action='store_true', help='Run a single scan and exit')
    mode.add_argument('--interval', type=int, default=None,
                      help='Poll every N seconds (default: SCANNER_POLL_INTERVAL)')
    parser.add_argument('--dry-run', action='store_true',
                        help='Run the pipeline without writing snapshots or the ledger')
    parser.add_argument('--reset-ledger', action='store_true',
                        help='Clear the alert ledger before running')
    parser.add_argument('--signals-file', default=None,
                        help='JSON file of per-symbol social/news enrichment')
    parser.add_argument('--classes', default=None,
                        help=f"Comma-separated asset classes ({', '.join(ASSET_CLASSES)})")
    parser.add_argument('--log-level', default='INFO', help='Log level (default: INFO)')
    parser.add_argument('--log-file', default=None, help='Also log to this file')
    return parser.parse_args(argv)


def build_orchestrator(args: argparse.Namespace, config: ScannerConfig) -> ScanOrchestrator:
    """Wire the reference collaborators from config and CLI flags."""
    market_source = CompositeMarketSource({
        CRYPTO: CoinGeckoMarketSource(
            universe_size=config.crypto_universe_size,
            api_key=get_coingecko_key(),
            timeout=config.request_timeout,
        ),
        EQUITIES: YahooChartSource(config.equity_symbols, timeout=config.request_timeout),
    })

    if args.signals_file:
        signal_source = StaticSignalSource.from_file(args.signals_file)
    else:
        logger.warning("No --signals-file given; social/news enrichment is empty")
        signal_source = NullSignalSource()

    return ScanOrchestrator(
        config=config,
        market_source=market_source,
        signal_source=signal_source,
        writer=SnapshotWriter(
            preserve_last_good=config.preserve_last_good, dry_run=args.dry_run
        ),
        notifier=AlertNotifier(config.discord_webhook_url, config.alert_max_symbols),
    )


def reset_ledger(config: ScannerConfig, dry_run: bool) -> None:
    ledger = AlertLedger.load(config.ledger_path)
    count = len(ledger)
    ledger.clear()
    if dry_run:
        logger.info(f"Dry run: ledger reset skipped ({count} symbols)")
        return
    ledger.save()
    logger.info(f"Alert ledger reset ({count} symbols cleared)")


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level, args.log_file)
    load_config()

    config = ScannerConfig.from_env()
    if args.classes:
        config.asset_classes = [c.strip().lower() for c in args.classes.split(',') if c.strip()]
    unknown = [c for c in config.asset_classes if c not in ASSET_CLASSES]
    if unknown:
        logger.error(f"Unknown asset class(es): {', '.join(unknown)}")
        return 2

    if args.reset_ledger:
        reset_ledger(config, args.dry_run)

    orchestrator = build_orchestrator(args, config)

    if args.once:
        result = orchestrator.run_sync()
        failed = result['errors']
        for asset_class in config.asset_classes:
            count = len(result['results'].get(asset_class, []))
            status = f"FAILED ({failed[asset_class]})" if asset_class in failed else f"{count} assets"
            print(f"{asset_class}: {status}")
        if args.dry_run:
            print("(dry run - snapshots and ledger NOT written)")
        return 1 if len(failed) == len(config.asset_classes) else 0

    interval = args.interval or config.poll_interval_seconds
    logger.info(f"Polling every {interval}s (Ctrl+C to stop)")
    try:
        while True:
            started = time.time()
            orchestrator.run_sync()
            time.sleep(max(0.0, interval - (time.time() - started)))
    except KeyboardInterrupt:
        logger.info("Scanner stopped")
    return 0


if __name__ == '__main__':
    sys.exit(main())
