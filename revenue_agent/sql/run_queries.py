"""
Run Queries Module for the Revenue Agent.

SQL for the agent_run audit trail. Rows are inserted when a job starts and
finalized exactly once; the finalize statement only matches running rows.
"""


INSERT_AGENT_RUN_QUERY = """
    INSERT INTO agent_run (id, run_type, status, started_at)
    VALUES ($1, $2, $3, $4)
"""

FINALIZE_AGENT_RUN_QUERY = """
    UPDATE agent_run
    SET status = $2,
        completed_at = $3,
        duration_ms = $4,
        items_processed = $5,
        opportunities_found = $6,
        errors_encountered = $7,
        error_details = $8::jsonb
    WHERE id = $1
      AND status = 'running'
"""

LAST_COMPLETED_RUN_TIMES_QUERY = """
    SELECT run_type, MAX(completed_at) AS last_completed_at
    FROM agent_run
    WHERE status = 'completed'
    GROUP BY run_type
"""

# $1 = since, $2 = limit
RECENT_RUNS_QUERY = """
    SELECT id, run_type, status, started_at, completed_at, duration_ms,
           items_processed, opportunities_found, errors_encountered, error_details
    FROM agent_run
    WHERE started_at >= $1
    ORDER BY started_at DESC
    LIMIT $2
"""
