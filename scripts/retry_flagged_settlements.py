"""Retry settlements that failed on our side after eSewa confirmed payment.

Orders flagged with needs_attention are still PENDING; each one is checked
against the eSewa status API and settled from its answer. Orders flagged for
INSUFFICIENT_STOCK stay flagged until stock is replenished or the payment is
refunded by hand.

Usage:
    python scripts/retry_flagged_settlements.py [--limit 100]
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from storefront.config import Settings, settings as default_settings, setup_logging
from storefront.database import async_session_maker, engine
from storefront.gateway import EsewaClient, GatewayUnavailable
from storefront.reconciliation import SettlementService, SettlementUnavailable
from storefront.repository import list_flagged_orders

logger = logging.getLogger("retry_flagged_settlements")


async def retry_flagged(session_maker, gateway: EsewaClient, settings: Settings, limit: int = 100) -> int:
    """Run every flagged PENDING order through the status check; returns the number of failed retries."""
    failures = 0
    async with session_maker() as session:
        flagged = [(o.transaction_uuid, o.settlement_error) for o in await list_flagged_orders(session, limit)]
        await session.commit()
        logger.info("%d flagged orders to retry", len(flagged))

        service = SettlementService(session, settings, gateway)
        for uuid, error in flagged:
            try:
                outcome = await service.reconcile_with_gateway(uuid)
            except (GatewayUnavailable, SettlementUnavailable) as e:
                failures += 1
                logger.warning("retry of %s (%s) failed: %s", uuid, error, e)
                continue
            print(f"{uuid}: {error} -> {outcome.kind.value} "
                  f"{outcome.status.value if outcome.status else outcome.reason.value}")
    return failures


async def _run(limit: int) -> int:
    gateway = EsewaClient(default_settings.status_url, timeout=default_settings.gateway_timeout_seconds)
    try:
        return await retry_flagged(async_session_maker, gateway, default_settings, limit)
    finally:
        await engine.dispose()


def main(argv=None):
    parser = argparse.ArgumentParser(description="Retry flagged eSewa settlements")
    parser.add_argument("--limit", type=int, default=100)
    args = parser.parse_args(argv)
    setup_logging()
    failures = asyncio.run(_run(args.limit))
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
