#!/usr/bin/env python3
"""Routing Reconciliation Script.

Lists transfers flagged for reconciliation (their exchange transaction was
created but a local write failed) and repairs missing routing mappings.

Usage:
    python scripts/reconcile.py
    python scripts/reconcile.py --tx <tx_signature> --external-ref <id> --fix

Options:
    --tx            Only reconcile this transfer
    --external-ref  Exchange transaction id to map the transfer to
    --fix           Store the mapping and clear the reconciliation flag
    --check-status  Query the exchange for flagged transfers that have a mapping
    --watch         Poll --tx until the exchange reports a terminal state
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dotenv import load_dotenv

from nullroute.config import get_settings
from nullroute.errors import NullrouteError
from nullroute.exchange.factory import create_exchange_client
from nullroute.governor import RequestGovernor
from nullroute.ledger.database import close_db, get_db, init_db
from nullroute.ledger.repository import LedgerRepository
from nullroute.ledger.routing_map import RoutingMap
from nullroute.services import TransferService

load_dotenv()

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


async def repair_mapping(routing_map: RoutingMap, tx_signature: str, external_ref: str) -> bool:
    """Store a missing mapping and clear the flag."""
    await routing_map.store(tx_signature, external_ref)
    async with get_db() as session:
        tx = await LedgerRepository(session).clear_reconciliation(tx_signature)
    if tx is None:
        logger.warning(f"{tx_signature}: mapping stored but no transaction record exists")
        return False
    logger.info(f"{tx_signature}: mapped to {external_ref}, flag cleared")
    return True


async def watch_transfer(routing_map: RoutingMap, tx_signature: str) -> None:
    """Poll one transfer at the configured interval until it settles."""
    settings = get_settings()
    service = TransferService(
        governor=RequestGovernor(
            create_exchange_client(settings),
            requests_per_second=settings.governor_requests_per_second,
        ),
        routing_map=routing_map,
        poll_interval=settings.status_poll_interval_seconds,
        poll_max_attempts=settings.status_poll_max_attempts,
    )

    status = await service.poll_until_terminal(tx_signature)
    if status is None:
        logger.warning(f"{tx_signature}: nothing to poll (unknown, settled or unmapped)")
    else:
        logger.info(f"{tx_signature}: {status.status.value}")


async def main():
    parser = argparse.ArgumentParser(description="Routing Reconciliation")
    parser.add_argument("--tx", type=str, help="Only reconcile this transfer")
    parser.add_argument("--external-ref", type=str, help="Exchange transaction id for --tx")
    parser.add_argument("--fix", action="store_true", help="Store mapping and clear flag")
    parser.add_argument("--check-status", action="store_true", help="Query exchange status")
    parser.add_argument("--watch", action="store_true", help="Poll --tx until it settles")
    args = parser.parse_args()

    await init_db()
    routing_map = RoutingMap()

    try:
        if args.fix:
            if not (args.tx and args.external_ref):
                parser.error("--fix requires --tx and --external-ref")
            await repair_mapping(routing_map, args.tx, args.external_ref)
            return

        if args.watch:
            if not args.tx:
                parser.error("--watch requires --tx")
            await watch_transfer(routing_map, args.tx)
            return

        async with get_db() as session:
            flagged = await LedgerRepository(session).get_unreconciled_transactions()

        if args.tx:
            flagged = [tx for tx in flagged if tx.tx_signature == args.tx]

        governor = RequestGovernor(create_exchange_client()) if args.check_status else None

        logger.info("=" * 60)
        logger.info(f"{len(flagged)} transfer(s) need reconciliation")
        logger.info("=" * 60)

        for tx in flagged:
            external_ref = await routing_map.lookup(tx.tx_signature)
            logger.info(f"{tx.tx_signature}: {tx.amount_sol} SOL -> {tx.recipient_public_key}")
            logger.info(f"  Payin:   {tx.payin_address}")
            logger.info(f"  Routing: {external_ref or 'MISSING'}")
            logger.info(f"  Reason:  {tx.error_message}")

            if governor is not None and external_ref:
                try:
                    status = await governor.enqueue_get_status(external_ref)
                    logger.info(f"  Status:  {status.status.value}")
                except NullrouteError as e:
                    logger.warning(f"  Status:  unavailable ({e})")
    finally:
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
