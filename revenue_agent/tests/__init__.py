'''
Revenue Agent Test Suite

Test Modules:
-------------
- test_affiliate_detector.py: affiliate sub-analyses, highest-confidence dedupe,
  idempotent persistence
- test_rpm_detector.py: RPM gap, bounce, thin content and traffic-mix analyses,
  highest-impact dedupe
- test_learning_engine.py: confidence curve, adjustment factors, trends,
  snapshots, insights and the dashboard
- test_impact_tracking.py: accuracy math, measurement windows, batch completion
- test_opportunity_store.py: upsert rule, approval transitions, expiry, stats
- test_auto_execution.py: execution gate, retries, per-run cap, circuit breaker
- test_orchestrator.py: job dispatch, soft-skips, full-scan failure isolation,
  cleanup, report
- test_notifications.py: Slack run summaries
- test_api.py: HTTP routes
- test_models.py, test_metric_aggregator.py, test_run_store.py: models and
  Postgres row mapping

Running Tests:
--------------
    pytest revenue_agent/tests -v
    pytest revenue_agent/tests -m scenario
'''
