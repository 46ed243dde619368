"""Test configuration and fixtures for the pingsweep test suite"""

import logging
import socket

import pytest

from pingsweep.logger import LOGGER_NAME


class FakeProber:
    """Reachability gate answering from a fixed set of responding addresses"""

    def __init__(self, responding=(), rtt_ms=1.5):
        self.responding = set(responding)
        self.rtt_ms = rtt_ms
        self.calls = []
        self.closed = False

    async def probe(self, address, index):
        self.calls.append((address, index))
        if address in self.responding:
            return self.rtt_ms
        return None

    def close(self):
        self.closed = True


@pytest.fixture
def fake_prober_factory():
    """Build fake probers for a given set of responding addresses"""
    return FakeProber


@pytest.fixture
def listening_port():
    """A 127.0.0.1 port with a listener; the kernel backlog completes connects"""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen(64)
    yield sock.getsockname()[1]
    sock.close()


@pytest.fixture
def refusing_port_factory():
    """Reserve 127.0.0.1 ports that are bound but not listening, so connects are refused"""
    reserved = []

    def reserve():
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.bind(("127.0.0.1", 0))
        reserved.append(sock)
        return sock.getsockname()[1]

    yield reserve
    for sock in reserved:
        sock.close()


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo setup_logging() so caplog sees records of every test"""
    yield
    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Tests opening local TCP sockets")


def pytest_collection_modifyitems(config, items):
    """Mark tests using real sockets as integration, the rest as unit"""
    socket_fixtures = {"listening_port", "refusing_port_factory"}
    for item in items:
        if socket_fixtures & set(getattr(item, "fixturenames", ())):
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
