"""Pytest configuration and fixtures."""

import os

import pytest

# Settings are read at import time by some modules (rate limiter), so the test
# environment must exist before test modules are collected.
os.environ["SUPABASE_URL"] = "https://test.supabase.co"
os.environ["SUPABASE_SERVICE_ROLE_KEY"] = "test-key"
os.environ["ENGINE_ENV"] = "test"
os.environ["WORKER_AUTH_TOKEN"] = "worker-token"
os.environ["CRON_SECRET"] = "cron-secret"
for key in (
    "GEMINI_API_KEY",
    "ANTHROPIC_API_KEY",
    "NVIDIA_API_KEY",
    "OLLAMA_BASE_URL",
    "SERPAPI_API_KEY",
    "WORKER_AUTH_DISABLED",
):
    os.environ.pop(key, None)


@pytest.fixture(autouse=True)
def reset_process_state():
    """Reset process-wide counters between tests."""
    from tender_engine.core.metrics import provider_metrics
    from tender_engine.core.rate_limiter import ai_rate_limiter

    provider_metrics.reset()
    ai_rate_limiter.reset()
    yield
    provider_metrics.reset()
    ai_rate_limiter.reset()
