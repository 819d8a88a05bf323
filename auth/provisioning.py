"""
auth/provisioning.py -- Seed data for newly created accounts.

Every new account gets a random portfolio split. Stocks and funds are each
drawn from 1..40 inclusive; bonds take the remainder, so bonds is always in
20..98 and the three components sum to 100.

provision_allocations() runs as a FastAPI background task after the signup
response is sent. It is best-effort: a failure is logged and never reaches
the user, whose session is already established.
"""

from __future__ import annotations

import logging
import random

from auth.store import AllocationStore

logger = logging.getLogger("foliogate.auth.provisioning")


def random_allocation(rng: random.Random | None = None) -> tuple[int, int, int]:
    """Return (stocks, funds, bonds) percentages."""
    rng = rng or random
    stocks = rng.randint(1, 40)
    funds = rng.randint(1, 40)
    bonds = 100 - (stocks + funds)
    return stocks, funds, bonds


async def provision_allocations(store: AllocationStore, account_id: int) -> None:
    stocks, funds, bonds = random_allocation()
    try:
        await store.set_allocations(account_id, stocks, funds, bonds)
    except Exception:
        logger.exception("Allocation provisioning failed for account %s", account_id)
        return
    logger.info("Provisioned allocations for account %s (%d/%d/%d)", account_id, stocks, funds, bonds)
