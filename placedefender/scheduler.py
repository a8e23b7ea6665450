import asyncio
import logging
import random
import time
from datetime import datetime
from typing import Awaitable, Callable, Optional

from placedefender.canvas import DEFAULT_LAYOUT, CanvasFeed, CanvasFetchError, CanvasViewCache
from placedefender.colors import ColorCatalog, get_palette
from placedefender.config import (
    AWAIT_ORDERS_DELAY,
    CANVAS_FAILURE_DELAY,
    COOLDOWN_SKEW_MS,
    DAY,
    GATE_SKIP_DELAY,
    HOUR,
    IDLE_DELAY,
    PLACEMENT_FAILURE_DELAY,
    REVIVE_DELAY,
    BotConfig,
)
from placedefender.credentials import CredentialPool
from placedefender.gateway import Accepted, MalformedResponse, PlacementGateway, RateLimited
from placedefender.orders import OrderStore
from placedefender.reconcile import SelectionMode, WrongPixel, find_wrong_pixels

logger = logging.getLogger(__name__)


def epoch_ms() -> int:
    return int(time.time() * 1000)


def placement_probability(wrong_count: int) -> float:
    """Chance that a sampling loop acts this round.

    A quarter for a single wrong pixel, climbing towards 1 as more of the
    image is damaged, so idle bots don't all pile onto the same few pixels.
    """
    if wrong_count <= 0:
        return 0.0
    return 1 - 0.75 * 0.9 ** (wrong_count - 1)


def _clock_time(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000).strftime("%H:%M:%S")


class PlacementLoop:
    """Control loop for one account.

    Each call to `step` runs one full cycle (check orders, diff the canvas,
    maybe place one pixel) and returns how long to wait before the next one.
    `run` repeats that forever; a cycle never starts before the previous one
    has resolved and its delay has passed.
    """

    def __init__(
        self,
        account: str,
        orders: OrderStore,
        pool: CredentialPool,
        canvas: CanvasViewCache,
        gateway: PlacementGateway,
        catalog: ColorCatalog,
        mode: SelectionMode = SelectionMode.SCAN_FIRST,
        clock: Callable[[], int] = epoch_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.account = account
        self.orders = orders
        self.pool = pool
        self.canvas = canvas
        self.gateway = gateway
        self.catalog = catalog
        self.mode = mode
        self.name = pool.label(account)
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()

    async def step(self) -> float:
        if not self.orders.has_data:
            logger.debug("[%s] No placement orders yet.", self.name)
            return AWAIT_ORDERS_DELAY
        token = self.pool.token_for(self.account)
        if not token:
            logger.debug("[%s] No access token yet.", self.name)
            return AWAIT_ORDERS_DELAY

        snapshot = self.orders.snapshot
        try:
            wrong = await find_wrong_pixels(snapshot, self.canvas.color_at, self.catalog, self.mode)
        except CanvasFetchError as err:
            logger.warning("[%s] Failed to retrieve canvas: %s. Retrying in %d sec...",
                           self.name, err, CANVAS_FAILURE_DELAY)
            if err.auth_failed:
                self.pool.request_refresh(self.pool.canvas_account())
            return CANVAS_FAILURE_DELAY

        if not wrong:
            logger.info("[%s] All the pixels are already in the right place!", self.name)
            return IDLE_DELAY

        if self.mode is SelectionMode.SAMPLE:
            chance = placement_probability(len(wrong))
            if self._rng.random() >= chance:
                logger.info("[%s] %d pixels are wrong, sitting this round out (%.0f%% chance to place).",
                            self.name, len(wrong), chance * 100)
                return GATE_SKIP_DELAY
            target = self._rng.choice(wrong)
        else:
            target = wrong[0]

        return await self.place(target, token)

    async def place(self, pixel: WrongPixel, token: str) -> float:
        color = pixel.desired
        if pixel.observed is None:
            logger.info("[%s] Pixel at (%d,%d) has an unknown color. Replacing with %s.",
                        self.name, pixel.x, pixel.y, color.name)
        else:
            logger.info("[%s] Pixel at (%d,%d) is %s but needs to be %s. Replacing.",
                        self.name, pixel.x, pixel.y, pixel.observed.name, color.name)

        result = await self.gateway.submit(pixel.x, pixel.y, color.id, token)

        if isinstance(result, (Accepted, RateLimited)):
            next_pixel = result.next_allowed_at + COOLDOWN_SKEW_MS
            delay = max(0, next_pixel - self._clock()) / 1000
            if isinstance(result, Accepted):
                logger.info("[%s] Successfully placed %s pixel on %d, %d. Next pixel is placed at %s.",
                            self.name, color.name, pixel.x, pixel.y, _clock_time(next_pixel))
            else:
                logger.info("[%s] Tried placing pixel too soon! Next pixel is placed at %s.",
                            self.name, _clock_time(next_pixel))
            if delay > DAY:
                logger.error("[%s] Cooldown of %.0f hours, this account is probably banned from r/place.",
                             self.name, delay / HOUR)
            return delay

        if isinstance(result, MalformedResponse):
            logger.warning("[%s] Error in response analysis: %s. Raw response: %r",
                           self.name, result.cause, result.raw)
        else:
            logger.warning("[%s] Placement request failed: %s", self.name, result.cause)
        if result.auth_expired:
            logger.warning("[%s] Access token looks expired, asking for a new one.", self.name)
            self.pool.request_refresh(self.account)
        return PLACEMENT_FAILURE_DELAY

    async def run(self):
        while True:
            try:
                delay = await self.step()
            except Exception:
                logger.exception("[%s] NON-TERMINAL ERROR ENCOUNTERED. Reviving in %d sec...",
                                 self.name, REVIVE_DELAY)
                delay = REVIVE_DELAY
            await self._sleep(delay)


async def run_agent(config: BotConfig):
    """Wire everything together and run until the process is stopped."""
    catalog = get_palette(config.palette)
    mode = SelectionMode(config.mode)
    orders = OrderStore(config.orders_url, bounds=(DEFAULT_LAYOUT.max_x, DEFAULT_LAYOUT.max_y))
    pool = CredentialPool(config.sessions, raw_tokens=config.raw_tokens)
    canvas = CanvasViewCache(CanvasFeed(), pool.canvas_token)
    gateway = PlacementGateway()

    await asyncio.gather(orders.refresh(), pool.refresh_all())

    loops = [
        PlacementLoop(account, orders, pool, canvas, gateway, catalog, mode=mode)
        for account in pool.accounts
    ]
    logger.info("Starting %d placement loop(s) in %s mode with the %s palette.",
                len(loops), mode.value, config.palette)
    await asyncio.gather(
        orders.run(config.order_refresh_interval, refresh_first=False),
        pool.run(config.token_refresh_interval, refresh_first=False),
        *(loop.run() for loop in loops),
    )
