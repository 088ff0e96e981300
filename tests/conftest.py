"""
Pytest configuration for the settlement tests.

Adds the project root to the Python path so that tests can import the domain,
repositories and services packages, and provides an in-memory database
installed as the shared Supabase client.
"""

import random
import sys
from pathlib import Path

import pytest

# Add the project root to the Python path
# so tests can import domain, repositories, etc.
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from fakes import FakeSupabase  # noqa: E402
from repositories.client import use_client  # noqa: E402
from services.authority_gateway import AuthorityGateway, SimulatedAuthorityTransport  # noqa: E402
from services.settings import SettlementSettings  # noqa: E402
from services.settlement_service import SettlementContext  # noqa: E402


@pytest.fixture
def fake_db():
    """In-memory database used by every repository for the duration of a test."""

    db = FakeSupabase()
    use_client(db)
    yield db
    use_client(None)


@pytest.fixture
def make_context():
    """
    Build a settlement context with an instant, deterministic authority.

    Pass `approval_rate` for the simulated authority or a custom `transport`.
    """

    def _make(approval_rate: float = 1.0, *, transport=None, timeout_seconds: float = 5.0):
        transport = transport or SimulatedAuthorityTransport(
            approval_rate=approval_rate, delay_seconds=0, rng=random.Random(7)
        )
        return SettlementContext(
            settings=SettlementSettings(),
            gateway=AuthorityGateway(transport, timeout_seconds=timeout_seconds),
        )

    return _make
