"""
Learning Queries Module for the Revenue Agent.

SQL for impact_measurement (estimated vs. observed outcome per executed
action) and agent_learning_metric (rolling per-action-type snapshots).
"""


_MEASUREMENT_COLUMNS = """
        id, action_id, action_type, page_url, status, estimated_impact,
        measured_impact, baseline_value, measured_value, prediction_accuracy,
        prediction_error, baseline_start, start_date, end_date, completed_at
"""


def get_completed_measurements_query(filter_action_type: bool = False) -> str:
    """
    Generate the completed-measurements query.

    Args:
        filter_action_type: Add an `action_type = $1` predicate.

    Returns:
        Query over complete measurements with a non-null measured impact,
        ordered by completion time.
    """
    action_filter = "\n      AND action_type = $1" if filter_action_type else ""

    return f"""
    SELECT {_MEASUREMENT_COLUMNS}
    FROM impact_measurement
    WHERE status = 'complete'
      AND measured_impact IS NOT NULL{action_filter}
    ORDER BY completed_at ASC
    """


INSERT_MEASUREMENT_QUERY = """
    INSERT INTO impact_measurement (
        id, action_id, action_type, page_url, status, estimated_impact,
        baseline_value, baseline_start, start_date, end_date
    ) VALUES ($1, $2, $3, $4, 'pending', $5, $6, $7, $8, $9)
"""

# $1 = now
DUE_MEASUREMENTS_QUERY = f"""
    SELECT {_MEASUREMENT_COLUMNS}
    FROM impact_measurement
    WHERE status = 'pending'
      AND end_date <= $1
    ORDER BY end_date ASC
"""

COMPLETE_MEASUREMENT_QUERY = """
    UPDATE impact_measurement
    SET status = 'complete',
        measured_value = $2,
        measured_impact = $3,
        prediction_accuracy = $4,
        prediction_error = $5,
        completed_at = $6
    WHERE id = $1
      AND status = 'pending'
"""

LATEST_LEARNING_METRIC_QUERY = """
    SELECT action_type, sample_size, mean_accuracy, adjustment_factor,
           confidence, trend, period_start, period_end
    FROM agent_learning_metric
    WHERE action_type = $1
      AND metric_type = 'prediction_accuracy'
    ORDER BY period_end DESC
    LIMIT 1
"""

INSERT_LEARNING_METRIC_QUERY = """
    INSERT INTO agent_learning_metric (
        id, action_type, metric_type, sample_size, mean_accuracy,
        adjustment_factor, confidence, trend, period_start, period_end
    )
    SELECT $1, $2, 'prediction_accuracy', $3, $4, $5, $6, $7, $8, $9
    WHERE NOT EXISTS (
        SELECT 1
        FROM agent_learning_metric
        WHERE action_type = $2
          AND metric_type = 'prediction_accuracy'
          AND period_end > $8
    )
"""
