"""
Rewards SQL query module: XP events and the per-user rewards summary.
"""


INSERT_XP_TRANSACTION = """
INSERT INTO xp_transactions (
    owner_uid, action, xp_amount, source_id, source_type,
    organisation_uid, branch_uid, created_at
) VALUES ($1, $2, $3, $4, $5, $6, $7, NOW())
RETURNING uid
"""


UPSERT_USER_REWARDS_XP = """
INSERT INTO user_rewards (owner_uid, total_xp, current_xp, current_level, current_rank, updated_at)
VALUES ($1, $2, $2, 1, 'ROOKIE', NOW())
ON CONFLICT (owner_uid)
DO UPDATE SET
    total_xp = user_rewards.total_xp + EXCLUDED.total_xp,
    current_xp = user_rewards.current_xp + EXCLUDED.current_xp,
    updated_at = NOW()
"""


GET_USER_REWARDS = """
SELECT owner_uid, total_xp, current_xp, current_level, current_rank
FROM user_rewards
WHERE owner_uid = $1
"""


GET_XP_EARNED_BETWEEN = """
SELECT COALESCE(SUM(xp_amount), 0) AS xp, COUNT(*) AS events
FROM xp_transactions
WHERE owner_uid = $1 AND created_at BETWEEN $2 AND $3
"""
