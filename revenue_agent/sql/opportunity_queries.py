"""
Opportunity Queries Module for the Revenue Agent.

SQL for the monetization_opportunity / monetization_action queue. The upsert
runs as a read-then-write inside one transaction: the live row for the
(opportunity_type, page_url) key is locked with FOR UPDATE before it is
compared against the incoming candidate.

When no live row exists the insert goes through ON CONFLICT against the
partial unique index below. A run that loses the insert race to a concurrent
run gets no id back and re-reads the now-committed row instead.
"""


# =============================================================================
# SCHEMA
# =============================================================================

# One live row per (opportunity_type, page_url)
LIVE_KEY_INDEX_DDL = """
    CREATE UNIQUE INDEX IF NOT EXISTS monetization_opportunity_live_key
        ON monetization_opportunity (opportunity_type, page_url)
        WHERE status IN ('pending', 'approved', 'implemented')
"""


# =============================================================================
# UPSERT
# =============================================================================

# $1 = opportunity_type, $2 = page_url, $3 = live statuses
FIND_LIVE_OPPORTUNITY_QUERY = """
    SELECT id, status, confidence
    FROM monetization_opportunity
    WHERE opportunity_type = $1
      AND page_url = $2
      AND status = ANY($3::text[])
    ORDER BY created_at DESC
    LIMIT 1
    FOR UPDATE
"""

UPDATE_OPPORTUNITY_QUERY = """
    UPDATE monetization_opportunity
    SET title = $2,
        description = $3,
        confidence = $4,
        estimated_impact = $5,
        priority = $6,
        estimated_rpm_increase = $7,
        content_id = COALESCE($8, content_id),
        updated_at = NOW()
    WHERE id = $1
"""

INSERT_OPPORTUNITY_QUERY = """
    INSERT INTO monetization_opportunity (
        id, opportunity_type, page_url, content_id, title, description,
        confidence, estimated_impact, priority, estimated_rpm_increase,
        status, created_at, expires_at
    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, 'pending', $11, $12)
    ON CONFLICT (opportunity_type, page_url)
        WHERE status IN ('pending', 'approved', 'implemented')
        DO NOTHING
    RETURNING id
"""

DELETE_PENDING_ACTIONS_QUERY = """
    DELETE FROM monetization_action
    WHERE opportunity_id = $1
      AND status = 'pending'
"""

INSERT_ACTION_QUERY = """
    INSERT INTO monetization_action (
        id, opportunity_id, action_type, parameters, status, estimated_impact,
        execution_attempts, created_at
    ) VALUES ($1, $2, $3, $4::jsonb, 'pending', $5, 0, $6)
"""


# =============================================================================
# READS
# =============================================================================

_OPPORTUNITY_COLUMNS = """
        id, opportunity_type, page_url, content_id, title, description,
        confidence, estimated_impact, priority, estimated_rpm_increase,
        status, created_at, expires_at
"""

# $1 = status, $2 = limit
LIST_BY_STATUS_QUERY = f"""
    SELECT {_OPPORTUNITY_COLUMNS}
    FROM monetization_opportunity
    WHERE status = $1
    ORDER BY priority DESC, estimated_impact DESC, created_at ASC
    LIMIT $2
"""

GET_OPPORTUNITY_QUERY = f"""
    SELECT {_OPPORTUNITY_COLUMNS}
    FROM monetization_opportunity
    WHERE id = $1
"""

# $1 = opportunity id array
LIST_ACTIONS_QUERY = """
    SELECT id, opportunity_id, action_type, parameters, status,
           estimated_impact, execution_attempts, executed_at, error
    FROM monetization_action
    WHERE opportunity_id = ANY($1::text[])
    ORDER BY created_at ASC
"""

QUEUE_STATS_QUERY = """
    SELECT status,
           COUNT(*) AS opportunity_count,
           COALESCE(SUM(estimated_impact), 0) AS impact
    FROM monetization_opportunity
    GROUP BY status
"""


# =============================================================================
# STATE TRANSITIONS
# =============================================================================

# $1 = id, $2 = new status, $3 = required current status
SET_OPPORTUNITY_STATUS_QUERY = """
    UPDATE monetization_opportunity
    SET status = $2, updated_at = NOW()
    WHERE id = $1
      AND status = $3
"""

SET_ACTION_STATUS_QUERY = """
    UPDATE monetization_action
    SET status = $2
    WHERE opportunity_id = $1
      AND status = $3
"""

# $1 = action id, $2 = status, $3 = executed_at, $4 = error
MARK_ACTION_EXECUTED_QUERY = """
    UPDATE monetization_action
    SET status = $2,
        executed_at = $3,
        error = $4,
        execution_attempts = execution_attempts + 1
    WHERE id = $1
    RETURNING opportunity_id
"""

COUNT_UNEXECUTED_ACTIONS_QUERY = """
    SELECT COUNT(*)
    FROM monetization_action
    WHERE opportunity_id = $1
      AND status <> 'executed'
"""

# $1 = created_at cutoff, $2 = now
EXPIRE_PENDING_QUERY = """
    UPDATE monetization_opportunity
    SET status = 'expired', updated_at = NOW()
    WHERE status = 'pending'
      AND (created_at < $1 OR (expires_at IS NOT NULL AND expires_at < $2))
"""
