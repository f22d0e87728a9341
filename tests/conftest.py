"""Pytest fixtures and configuration.

Provides shared fixtures for both unit and integration tests.
"""
import sys
from pathlib import Path
import pytest
import os
from typing import Callable, Generator, Optional

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


class FakeClock:
    """Manually advanced millisecond clock for rate limiter and trace tests."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self.now_ms = start_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_orchestrator() -> Generator[Callable, None, None]:
    """Build a CoachOrchestrator wired to a MockProvider.

    Example:
        def test_x(make_orchestrator):
            orchestrator, provider = make_orchestrator(script=["Hello!"])
    """
    from networth_coach.config import Settings
    from networth_coach.enrichment import EnrichmentGateway
    from networth_coach.llm.providers import MockProvider, ProviderRegistry
    from networth_coach.orchestrator import CoachOrchestrator
    from networth_coach.rate_limiter import RateLimiter
    from networth_coach.tracing import TraceRecorder

    built = []

    def _make(
        script=None,
        provider: Optional[MockProvider] = None,
        settings: Optional[Settings] = None,
        enrichment: Optional[EnrichmentGateway] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        provider = provider or MockProvider(script=script)
        settings = settings or Settings(default_provider="mock", default_model="mock-llm-v1")
        registry = ProviderRegistry(factories={"mock": lambda model: provider})
        orchestrator = CoachOrchestrator(
            providers=registry,
            rate_limiter=rate_limiter or RateLimiter(
                max_requests=settings.rate_limit_max_requests,
                window_ms=settings.rate_limit_window_ms,
            ),
            tracer=TraceRecorder(capacity=settings.trace_capacity),
            enrichment=enrichment or EnrichmentGateway(timeout_seconds=1.0),
            settings=settings,
        )
        built.append(orchestrator)
        return orchestrator, provider

    yield _make

    for orchestrator in built:
        orchestrator.close()


# Integration test fixtures for Redis
@pytest.fixture(scope="session")
def redis_url() -> str:
    """Get Redis URL from environment or use default."""
    # Use 127.0.0.1 instead of localhost for Windows/Docker compatibility
    return os.getenv("REDIS_URL", "redis://127.0.0.1:6379/0")


@pytest.fixture(scope="function")
def redis_client(redis_url: str) -> Generator:
    """Get raw Redis client for integration tests.

    Requires Redis to be running at REDIS_URL.
    Mark tests with @pytest.mark.integration to use this fixture.
    """
    try:
        import redis
        client = redis.from_url(
            redis_url,
            socket_connect_timeout=5,
            socket_timeout=5
        )
        client.ping()
    except Exception as e:
        pytest.skip(f"Redis not available at {redis_url}: {e}")

    # Clear before test (important for test isolation)
    client.flushdb()

    yield client

    # Cleanup
    client.flushdb()
    client.close()
