#!/usr/bin/env python3
"""
Standalone Ingestion Script for Alliance DAO NFT Transactions

Run this script manually or via cron to load transactions of the Alliance DAO
NFT collection, write month files and/or store them in BigQuery.

Usage:
    # Load specific blocks and write month files
    python scripts/run_ingestion.py --heights 14123456,14123470 --export-dir data

    # Load blocks listed in a file and merge them into an existing month file
    python scripts/run_ingestion.py --heights-file heights.txt --merge-into data/current-partial.json

    # Scan the newest 1000 blocks (batch 1) over RPC
    python scripts/run_ingestion.py --batch 1

    # Print a reward claims report
    python scripts/run_ingestion.py --heights-file heights.txt --rewards-report

    # Check status
    python scripts/run_ingestion.py --status

Environment variables:
    GOOGLE_APPLICATION_CREDENTIALS - Path to service account JSON file
    BQ_PROJECT_ID - BigQuery project ID (BigQuery is skipped when unset)
    TERRA_LCD_URL / TERRA_RPC_URL - Terra node endpoints
"""

import argparse
import json
import logging
import os
import sys
from datetime import datetime, timezone

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from alliance_explorer.config import ADDRESS_BOOK_URL, PipelineConfig
from alliance_explorer.ingestion_pipeline import IngestionPipeline, filter_new_heights, parse_block_heights
from alliance_explorer.lookups import AddressBook, load_address_book
from alliance_explorer.month_export import (
    build_raw_document,
    load_month_document,
    merge_month_document,
    plan_month_exports,
    read_month_file,
    start_month_document,
    write_month_exports,
)
from alliance_explorer.rewards_analyzer import RewardsAnalyzer

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)
logger = logging.getLogger(__name__)


def get_config(args) -> PipelineConfig:
    """Build configuration from environment and command line args."""
    config = PipelineConfig.from_env()
    if args.no_bigquery:
        config.bq_project_id = None
    if args.max_transactions is not None:
        config.max_transactions = args.max_transactions
    if args.pace_delay is not None:
        config.pace_delay_seconds = args.pace_delay
    return config


def read_heights(args):
    """Block heights from --heights and/or --heights-file."""
    text = args.heights or ''
    if args.heights_file:
        with open(args.heights_file) as f:
            text = f"{text}\n{f.read()}"
    return parse_block_heights(text)


def write_json(path, data):
    with open(path, 'w') as f:
        json.dump(data, f, indent=2)
    logger.info(f"Wrote {path}")


def run_ingestion(args):
    """Run the ingestion pipeline and write the requested outputs."""
    logger.info("=" * 50)
    logger.info("Alliance DAO NFT Ingestion")
    logger.info("=" * 50)
    logger.info(f"Started at: {datetime.now(timezone.utc).isoformat()}")

    config = get_config(args)
    heights = read_heights(args)

    existing_document = None
    if args.merge_into and os.path.exists(args.merge_into):
        existing_document = read_month_file(args.merge_into)
        before = len(heights)
        heights = filter_new_heights(heights, load_month_document(existing_document))
        logger.info(f"{before - len(heights)} heights already in {args.merge_into}")

    if not heights and not args.batch:
        logger.error("No block heights to load (use --heights, --heights-file or --batch)")
        return 1

    logger.info(f"NFT contract: {config.nft_contract}")
    logger.info(f"BigQuery: {config.bq_project_id or 'disabled'}")

    with IngestionPipeline(config) as pipeline:
        if heights:
            records, stats = pipeline.load_block_heights(heights)
        else:
            records, stats = pipeline.scan_batch(args.batch)
        if records and pipeline.bigquery_enabled:
            pipeline.store_new_records(records, stats)

    logger.info("")
    logger.info("=" * 50)
    logger.info("Results")
    logger.info("=" * 50)
    logger.info(f"Blocks processed: {stats.blocks_processed}/{stats.blocks_requested}")
    logger.info(f"Transactions found: {stats.transactions_found}")
    logger.info(f"Transactions inserted: {stats.transactions_inserted}")
    logger.info(f"Unclassified: {stats.unclassified}")
    for event_type, count in sorted(stats.event_types.items(), key=lambda x: x[1], reverse=True):
        logger.info(f"  {event_type}: {count}")

    if stats.errors:
        logger.error(f"Errors: {stats.errors}")

    address_book = load_address_book(args.address_book) if args.address_book else AddressBook()

    if args.export_dir and records:
        plans = plan_month_exports(records)
        write_month_exports(plans, args.export_dir, address_book)
        if args.raw:
            write_json(os.path.join(args.export_dir, 'raw-transactions.json'), build_raw_document(records))

    if args.merge_into and records:
        if existing_document is None:
            write_json(args.merge_into, start_month_document(records, address_book))
        else:
            write_json(args.merge_into, merge_month_document(existing_document, records))

    if args.rewards_report:
        print(RewardsAnalyzer(records, address_book).generate_summary_report())

    return 0 if (stats.blocks_processed or not stats.blocks_requested) else 1


def show_status(args):
    """Show pipeline status."""
    config = get_config(args)

    with IngestionPipeline(config) as pipeline:
        status = pipeline.get_status()

    print(json.dumps(status, indent=2, default=str))
    return 0


def main():
    parser = argparse.ArgumentParser(
        description='Alliance DAO NFT Transaction Ingestion',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    # Mode selection
    parser.add_argument(
        '--status', action='store_true',
        help='Show pipeline status'
    )

    # Input
    parser.add_argument(
        '--heights',
        help='Block heights separated by commas or spaces'
    )
    parser.add_argument(
        '--heights-file',
        help='File with block heights, one per line'
    )
    parser.add_argument(
        '--batch', type=int, default=0,
        help='Scan batch N of recent blocks over RPC when no heights are given'
    )

    # Output
    parser.add_argument(
        '--export-dir',
        help='Write month files into this directory'
    )
    parser.add_argument(
        '--raw', action='store_true',
        help='Also write raw ledger responses keyed by hash (with --export-dir)'
    )
    parser.add_argument(
        '--merge-into',
        help='Merge new transactions into this month file'
    )
    parser.add_argument(
        '--rewards-report', action='store_true',
        help='Print a reward claims summary'
    )
    parser.add_argument(
        '--address-book', nargs='?', const='default', default=None,
        help='Enrich exported parties from the community address book (optional URL)'
    )

    # Pipeline settings
    parser.add_argument(
        '--no-bigquery', action='store_true',
        help='Do not store records in BigQuery even if BQ_PROJECT_ID is set'
    )
    parser.add_argument(
        '--max-transactions', type=int, default=None,
        help='Stop a batch scan after this many transactions'
    )
    parser.add_argument(
        '--pace-delay', type=float, default=None,
        help='Pause in seconds after every 10 blocks'
    )

    args = parser.parse_args()
    if args.address_book == 'default':
        args.address_book = ADDRESS_BOOK_URL

    try:
        if args.status:
            return show_status(args)
        return run_ingestion(args)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1


if __name__ == '__main__':
    sys.exit(main())
