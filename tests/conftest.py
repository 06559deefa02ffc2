"""Test configuration and fixtures for pve-pact."""

import logging
import pytest
import sys
from pathlib import Path
from unittest.mock import AsyncMock

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from pve_pact.logging import logger  # noqa: E402


@pytest.fixture
def hypervisor():
    """Proxmox host double on which no VMID exists and every call succeeds."""
    host = AsyncMock()
    host.image_exists.return_value = False
    return host


@pytest.fixture
def customizer():
    """Packer customizer double that always succeeds."""
    return AsyncMock()


class RecordingHandler(logging.Handler):
    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.records = []

    def emit(self, record):
        self.records.append(record)


@pytest.fixture
def debug_records():
    """Records emitted by the package logger at DEBUG and above."""
    handler = RecordingHandler()
    previous = logger.logger.level
    logger.logger.addHandler(handler)
    logger.set_level("DEBUG")
    yield handler.records
    logger.logger.removeHandler(handler)
    logger.set_level(previous)


class FakeConnection:
    """Records commands and answers them from a table of prefixes."""

    def __init__(self, responses=None, host="pve.test"):
        self.host = host
        self.commands = []
        self.responses = responses or []

    def respond(self, prefix, stdout="", stderr="", exit_code=0):
        self.responses.append((prefix, (stdout, stderr, exit_code)))

    async def execute_command(self, command, timeout=None, log_command=None):
        self.commands.append(command)
        for prefix, result in self.responses:
            if command.startswith(prefix):
                return result
        return "", "", 0


@pytest.fixture
def connection():
    return FakeConnection()
