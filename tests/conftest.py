"""Shared pytest configuration and fakes for the placedefender test suite."""

import asyncio
import logging
import sys
from pathlib import Path

import numpy as np
import pytest

# Ensure the project root is in the path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from placedefender.orders import Order  # noqa: E402

RED = (255, 69, 0, 255)
BLACK = (0, 0, 0, 255)
WHITE = (255, 255, 255, 255)


class StopLoop(Exception):
    """Raised by fake sleeps to break out of endless loops."""


class MockOrderStore:
    def __init__(self, orders=None):
        self.has_data = orders is not None
        self.snapshot = tuple(Order(*o) for o in (orders or ()))


class MockCredentialPool:
    def __init__(self, tokens=None):
        self._tokens = dict(tokens if tokens is not None else {"session-a": "token-a"})
        self.accounts = list(self._tokens) or ["session-a"]
        self.refresh_requests = []

    @property
    def default(self):
        return self.accounts[0]

    def label(self, account):
        return f"account #{self.accounts.index(account) + 1}"

    def token_for(self, account):
        return self._tokens.get(account)

    def canvas_account(self):
        return next((a for a in self.accounts if self._tokens.get(a)), self.default)

    def canvas_token(self):
        return self._tokens.get(self.canvas_account())

    def request_refresh(self, account):
        self.refresh_requests.append(account)


class MockCanvas:
    """Serves colors from a dict, recording every query."""

    def __init__(self, pixels=None, default=WHITE, error=None):
        self.pixels = pixels or {}
        self.default = default
        self.error = error
        self.queries = []

    async def color_at(self, x, y):
        self.queries.append((x, y))
        if self.error is not None:
            raise self.error
        return self.pixels.get((x, y), self.default)


class MockGateway:
    def __init__(self, result=None):
        self.result = result
        self.calls = []

    async def submit(self, x, y, color_id, token):
        self.calls.append((x, y, color_id, token))
        return self.result


class FakeFeed:
    """Tile source for a real CanvasViewCache: black tiles with one red pixel at (7, 9)."""

    def __init__(self, pixels=None):
        self.fetches = []
        self.pixels = pixels

    async def fetch_tile(self, tile_id, token):
        self.fetches.append((tile_id, token))
        await asyncio.sleep(0)
        if self.pixels is not None:
            return self.pixels
        tile = np.zeros([1000, 1000, 4], dtype=np.uint8)
        tile[:, :, 3] = 255
        tile[7, 9] = (255, 69, 0, 255)
        return tile


class FixedRandom:
    """Stand-in for random.Random with a fixed draw and a chosen index."""

    def __init__(self, value=0.0, index=0):
        self.value = value
        self.index = index

    def random(self):
        return self.value

    def choice(self, seq):
        return seq[self.index]


@pytest.fixture
def restore_root_logging():
    """Put back the root logger handlers after a test reconfigures logging."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
