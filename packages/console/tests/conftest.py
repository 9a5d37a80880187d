"""
Shared fixtures for console tests.
"""

import asyncio
import random

import pytest
import uvicorn

from console_core.metrics import MetricsCollector
from console_core.storage import ActiveTenantSlot, ClientStorage
from console_core.tenancy import TenantResolver

from .fakes import FakePlatform
from .mock_servers import create_completion_app, create_platform_app


class _UvicornServer:
    def __init__(self, app, host: str, port: int):
        self.config = uvicorn.Config(app, host=host, port=port, log_level="error")
        self.server = uvicorn.Server(self.config)
        self._task: asyncio.Task | None = None

    async def start(self):
        self._task = asyncio.create_task(self.server.serve())
        for _ in range(100):
            if self.server.started:
                return
            await asyncio.sleep(0.05)
        raise RuntimeError("Server did not start")

    async def stop(self):
        self.server.should_exit = True
        if self._task:
            try:
                await asyncio.wait_for(self._task, timeout=5)
            except (asyncio.TimeoutError, asyncio.CancelledError):
                self._task.cancel()


def _pick_port():
    return random.randint(19000, 19999)


# --- Unit fixtures ---

@pytest.fixture
async def storage(tmp_path):
    s = ClientStorage(str(tmp_path / "client_storage.db"))
    await s.open()
    yield s
    await s.close()


@pytest.fixture
def slot(storage):
    return ActiveTenantSlot(storage)


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def resolver(platform, slot, metrics):
    return TenantResolver(platform, slot, metrics=metrics)


# --- Integration servers ---

@pytest.fixture
async def platform_server():
    port = _pick_port()
    app = create_platform_app()
    srv = _UvicornServer(app, "127.0.0.1", port)
    await srv.start()
    yield f"http://127.0.0.1:{port}"
    await srv.stop()


@pytest.fixture
async def completion_server():
    port = _pick_port()
    app = create_completion_app()
    srv = _UvicornServer(app, "127.0.0.1", port)
    await srv.start()
    yield f"http://127.0.0.1:{port}"
    await srv.stop()
