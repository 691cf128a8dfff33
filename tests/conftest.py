"""
Pytest configuration and shared fixtures for SLA monitor tests.

Testing Standards:
- Async tests run under pytest-asyncio (auto mode enabled in pyproject.toml)
- Unit tests (pure domain, no store) go in tests/unit/
- Integration tests run against a file-backed SQLite database per test
  and live in tests/integration/
"""

import pytest

from finops_sla.infrastructure.database import build_engine, build_session_maker, create_tables
from finops_sla.sla.domain import FixedClock, ThresholdPolicy
from finops_sla.sla.interfaces import build_sla_services

from tests.helpers import StaticPolicyProvider, ist


@pytest.fixture
def policy() -> ThresholdPolicy:
    return ThresholdPolicy(
        pre_start_lead_minutes=15,
        sla_grace_minutes=0,
        escalation_delay_minutes=15,
        justification_min_length=10,
        timezone="Asia/Kolkata",
    )


@pytest.fixture
def policy_provider(policy) -> StaticPolicyProvider:
    return StaticPolicyProvider(policy)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(ist(8, 0))


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'sla.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return build_session_maker(engine)


@pytest.fixture
def services(session_maker, policy_provider, clock):
    return build_sla_services(session_maker, policy_provider, clock)
