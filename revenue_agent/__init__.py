"""
Revenue Agent Package.

Autonomous revenue-opportunity detection and self-calibrating estimation engine
for a content platform. Scans traffic and revenue aggregates, queues ranked
monetization opportunities, and recalibrates its estimates from measured outcomes.

Subpackages:
    - api: FastAPI route handlers (job trigger, report, learning dashboard)
    - core: Configuration, database pool, and dependencies
    - models: Pydantic schemas and enums
    - services: Detectors, learning engine, stores, impact tracking
    - jobs: Orchestrator and run notifications
    - sql: Parameterized SQL queries
"""

__version__ = "1.0.0"
