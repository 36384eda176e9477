"""
Tests for the HTTP surface.

Uses FastAPI's TestClient without entering the lifespan, so no database pool
is opened; the orchestrator dependency is overridden with one wired to the
in-memory fakes.
"""

import asyncio
from typing import Generator

import pytest
from fastapi.testclient import TestClient

from revenue_agent.core.dependencies import get_orchestrator
from revenue_agent.jobs.orchestrator import AgentOrchestrator
from revenue_agent.main import app
from revenue_agent.models import DetectionSummary
from revenue_agent.services.learning_engine import LearningEngine
from revenue_agent.services.run_store import RunRecorder
from revenue_agent.tests.conftest import (
    FakeMeasurementStore,
    FakeOpportunityStore,
    FakeRunStore,
    make_candidate,
    make_measurement,
)


class StubDetector:
    def __init__(self, summary):
        self.summary = summary

    async def run(self):
        return self.summary


@pytest.fixture
def orchestrator(settings) -> AgentOrchestrator:
    run_store = FakeRunStore()
    return AgentOrchestrator(
        settings=settings,
        store=FakeOpportunityStore(),
        affiliate_detector=StubDetector(DetectionSummary(candidates_scanned=3, opportunities_created=1)),
        rpm_detector=StubDetector(DetectionSummary()),
        run_recorder=RunRecorder(run_store),
        run_store=run_store,
        learning=LearningEngine(FakeMeasurementStore([make_measurement() for _ in range(6)])),
    )


def _seed(orchestrator) -> str:
    return asyncio.run(orchestrator.store.upsert_opportunity(make_candidate('/mods/abc')))


@pytest.fixture
def client(orchestrator) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestHealth:

    def test_health(self) -> None:
        response = TestClient(app).get('/health')

        assert response.status_code == 200
        assert response.json() == {'status': 'healthy'}

    def test_agent_routes_unavailable_without_orchestrator(self) -> None:
        app.state.orchestrator = None

        response = TestClient(app).post('/jobs/cleanup')

        assert response.status_code == 503


class TestJobRoutes:

    def test_trigger_job(self, client) -> None:
        response = client.post('/jobs/affiliate_scan')

        assert response.status_code == 200
        body = response.json()
        assert body['job'] == 'affiliate_scan'
        assert body['success'] is True
        assert body['items_processed'] == 3
        assert body['opportunities_found'] == 1

    def test_unknown_job_is_404(self, client) -> None:
        response = client.post('/jobs/nightly')

        assert response.status_code == 404
        assert response.json()['detail'] == 'Unknown job type: nightly'

    def test_full_scan(self, client) -> None:
        body = client.post('/jobs/full').json()

        assert body['success'] is True
        assert len(body['sub_jobs']) == 7

    def test_report(self, client) -> None:
        client.post('/jobs/cleanup')

        response = client.get('/jobs/report', params={'hours': 12})

        assert response.status_code == 200
        body = response.json()
        assert body['window_hours'] == 12
        assert body['last_run_times']['cleanup'] is not None
        assert body['queue_stats']['pending'] == 0

    def test_report_hours_validated(self, client) -> None:
        assert client.get('/jobs/report', params={'hours': 0}).status_code == 422


class TestLearningRoutes:

    def test_dashboard(self, client) -> None:
        response = client.get('/learning/dashboard')

        assert response.status_code == 200
        body = response.json()
        assert body['total_measurements'] == 6
        assert body['overall_accuracy'] == pytest.approx(1.0)
        assert body['insights']


class TestOpportunityRoutes:

    def test_approve_and_list(self, client, orchestrator) -> None:
        opportunity_id = _seed(orchestrator)

        pending = client.get('/opportunities').json()
        approved = client.post(f'/opportunities/{opportunity_id}/approve')
        listed = client.get('/opportunities', params={'status': 'approved'}).json()

        assert [o['id'] for o in pending] == [opportunity_id]
        assert approved.status_code == 200
        assert approved.json()['status'] == 'approved'
        assert approved.json()['actions'][0]['status'] == 'approved'
        assert [o['id'] for o in listed] == [opportunity_id]

    def test_reject_twice_conflicts(self, client, orchestrator) -> None:
        opportunity_id = _seed(orchestrator)

        first = client.post(f'/opportunities/{opportunity_id}/reject')
        second = client.post(f'/opportunities/{opportunity_id}/reject')

        assert first.status_code == 200
        assert second.status_code == 409
        assert 'rejected' in second.json()['detail']

    def test_missing_opportunity(self, client) -> None:
        assert client.post('/opportunities/nope/approve').status_code == 404
