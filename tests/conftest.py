"""Global pytest configuration."""

from __future__ import annotations

import asyncio
import inspect
import os
from collections.abc import Generator

import pytest

from fakes import FakeClock
from urlsentry.config import Config

# Keep a developer's .env from enabling live API calls during tests.
for _key in ("SAFE_BROWSING_API_KEY", "VIRUSTOTAL_API_KEY", "PHISHTANK_API_KEY"):
    os.environ.pop(_key, None)


@pytest.fixture(scope="session")
def event_loop() -> Generator[asyncio.AbstractEventLoop, None, None]:
    """Provide a shared event loop for async tests."""

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        yield loop
    finally:
        loop.close()


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem):  # type: ignore[override]
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        testargs = {
            name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames
        }
        shared = testargs.get("event_loop")
        loop = shared or asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            loop.run_until_complete(pyfuncitem.obj(**testargs))
        finally:
            if shared is None:
                loop.close()
        return True
    return None


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "asyncio: mark test as requiring asyncio support")


@pytest.fixture
def config() -> Config:
    return Config()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
