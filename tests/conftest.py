"""Pytest configuration and fixtures for Carecore tests."""

from __future__ import annotations

import pytest

from carecore.config import CarecoreConfig
from carecore.models.safety import (
    CrisisTrigger,
    EmergencyContact,
    NeverAllowRule,
    SafetyRules,
)
from carecore.observability import metrics
from carecore.storage.document_store import DocumentStore


@pytest.fixture(scope="session", autouse=True)
def setup_telemetry():
    """Setup OpenTelemetry once for the whole test session."""
    from carecore.observability.tracing import setup_telemetry

    setup_telemetry(
        service_name="carecore-test",
        enable_console_export=False,
        otlp_endpoint=None,
    )

    yield


@pytest.fixture(autouse=True)
def reset_metrics():
    """Start every test from zeroed metrics."""
    metrics.reset_all_metrics()
    yield


@pytest.fixture
async def document_store():
    """Fresh in-memory document store for each test."""
    store = DocumentStore(database_path=":memory:")
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def config() -> CarecoreConfig:
    """Default configuration."""
    return CarecoreConfig()


@pytest.fixture
def safety_rules() -> SafetyRules:
    """Safety rules for a user who must not leave home alone."""
    return SafetyRules(
        user_id="user-1",
        never_allow=[
            NeverAllowRule(
                rule="leaving_home_alone",
                reason="Gets disoriented outside without a companion",
                severity="critical",
            )
        ],
        redirect_to_family=["finances"],
        approved_activities=["music", "photos"],
        crisis_triggers=[
            CrisisTrigger(
                keyword="רוצה לצאת",
                rule="leaving_home_alone",
                action="Redirect gently and notify family",
            ),
            CrisisTrigger(keyword="leave the house", rule="leaving_home_alone"),
            "I want to die",
        ],
        forbidden_topics=["politics", "medication changes"],
        emergency_contacts=[
            EmergencyContact(name="Michal", phone="+972-50-0000000", relationship="daughter"),
        ],
    )
