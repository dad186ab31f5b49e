"""
Rewards service: experience points (XP) for field activity.

Check-ins, check-outs and inspections award XP. Each award writes one
``xp_transactions`` row and bumps the user's running total in
``user_rewards`` within a single transaction.

Callers treat an award as a side effect: they log a failure and carry on,
so ``award_xp`` raises on database errors and leaves the decision to them.
"""

import logging
from typing import Any, Dict, Optional

from fieldops.core.database import get_db_pool, execute_query_one
from fieldops.models.enums import XPAction
from fieldops.sql import reward_queries

logger = logging.getLogger(__name__)


# XP per action for the fixed-value awards.
CHECK_IN_CLIENT_XP: int = 10
CHECK_OUT_XP: int = 10

# Inspection XP by overall rating band.
INSPECTION_XP_BY_RATING: Dict[str, int] = {
    "EXCELLENT": 50,
    "GOOD": 30,
    "AVERAGE": 20,
    "POOR": 10,
    "CRITICAL": 5,
}


async def award_xp(
    owner_id: int,
    amount: int,
    action: XPAction,
    source_id: Optional[int] = None,
    source_type: Optional[str] = None,
    org_id: Optional[int] = None,
    branch_id: Optional[int] = None,
) -> Optional[int]:
    """
    Record an XP award and add it to the user's total.

    Args:
        owner_id: User receiving the XP.
        amount: XP to add; non-positive amounts are ignored.
        action: Activity that earned the XP.
        source_id: Row id of the record that triggered the award.
        source_type: Kind of record (``check-in``, ``journal``...).

    Returns:
        The xp_transactions uid, or None when nothing was awarded.
    """
    if amount <= 0:
        return None

    pool = await get_db_pool()
    async with pool.acquire() as conn:
        async with conn.transaction():
            transaction_id = await conn.fetchval(
                reward_queries.INSERT_XP_TRANSACTION,
                owner_id,
                action.value,
                amount,
                source_id,
                source_type,
                org_id,
                branch_id,
            )
            await conn.execute(reward_queries.UPSERT_USER_REWARDS_XP, owner_id, amount)

    logger.info(f"Awarded {amount} XP to user {owner_id} for {action.value}")
    return transaction_id


def inspection_xp(rating: str) -> int:
    return INSPECTION_XP_BY_RATING.get(rating, INSPECTION_XP_BY_RATING["CRITICAL"])


async def get_rewards_summary(owner_id: int, start: Any, end: Any) -> Dict[str, Any]:
    """Rewards snapshot for reports: XP earned in the window plus level and rank."""
    rewards = await execute_query_one(reward_queries.GET_USER_REWARDS, owner_id)
    earned = await execute_query_one(reward_queries.GET_XP_EARNED_BETWEEN, owner_id, start, end)

    return {
        "dailyXPEarned": int(earned["xp"]) if earned else 0,
        "xpEvents": int(earned["events"]) if earned else 0,
        "currentLevel": rewards["current_level"] if rewards and rewards["current_level"] else 1,
        "currentRank": rewards["current_rank"] if rewards and rewards["current_rank"] else "ROOKIE",
        "totalXP": int(rewards["total_xp"]) if rewards and rewards["total_xp"] else 0,
        "currentXP": int(rewards["current_xp"]) if rewards and rewards["current_xp"] else 0,
    }
