import asyncio
import logging
from typing import Awaitable, Callable, List, NamedTuple, Optional, Tuple

import requests

from placedefender.config import HTTP_TIMEOUT, ORDER_REFRESH_INTERVAL, ORDERS_URL

logger = logging.getLogger(__name__)


class Order(NamedTuple):
    x: int
    y: int
    color_id: int


def parse_orders(data, bounds: Optional[Tuple[int, int]] = None) -> List[Order]:
    """Turn the feed's `[[x, y, colorId], ...]` into Orders, dropping malformed
    entries and, when `bounds` (width, height) is given, those off the canvas."""
    if not isinstance(data, list):
        raise ValueError(f"expected a JSON array of orders, got {type(data).__name__}")

    orders = []
    dropped = 0
    for entry in data:
        if (
            isinstance(entry, (list, tuple))
            and len(entry) == 3
            and all(isinstance(v, int) and not isinstance(v, bool) and v >= 0 for v in entry)
        ):
            if bounds is not None and (entry[0] >= bounds[0] or entry[1] >= bounds[1]):
                dropped += 1
                continue
            orders.append(Order(*entry))
        else:
            dropped += 1
    if dropped:
        logger.warning("Ignored %d malformed or off-canvas placement orders.", dropped)
    return orders


class OrderStore:
    """Latest list of placement orders.

    The snapshot is a tuple that is swapped whole on every successful refresh,
    so a loop holding the previous one keeps a consistent view. A failed
    refresh never clears what we already have.
    """

    def __init__(self, url: str = ORDERS_URL, timeout: float = HTTP_TIMEOUT,
                 bounds: Optional[Tuple[int, int]] = None):
        self.url = url
        self.timeout = timeout
        self.bounds = bounds
        self._snapshot: Tuple[Order, ...] = ()
        self.has_data = False

    @property
    def snapshot(self) -> Tuple[Order, ...]:
        return self._snapshot

    def _fetch(self):
        return requests.get(self.url, timeout=self.timeout)

    async def refresh(self) -> bool:
        logger.debug("Loading new placement orders.")
        try:
            response = await asyncio.to_thread(self._fetch)
        except requests.RequestException as err:
            logger.warning("Could not load new placement orders! %s", err)
            return False

        if response.status_code != 200:
            logger.warning("Could not load new placement orders! (status code %d)", response.status_code)
            return False

        try:
            orders = tuple(parse_orders(response.json(), self.bounds))
        except ValueError as err:
            logger.warning("Could not load new placement orders! (bad payload: %s)", err)
            return False

        if orders != self._snapshot or not self.has_data:
            logger.info("Loaded new placement orders. Total pixel count: %d.", len(orders))
        self._snapshot = orders
        self.has_data = True
        return True

    async def run(self, interval: float = ORDER_REFRESH_INTERVAL,
                  sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                  refresh_first: bool = True):
        if refresh_first:
            await self.refresh()
        while True:
            await sleep(interval)
            await self.refresh()
