import asyncio
import json
import logging
import time
from io import BytesIO
from typing import Callable, Dict, NamedTuple, Optional, Sequence, Tuple

import numpy as np
import requests
from PIL import Image, UnidentifiedImageError
from websocket import (
    WebSocketBadStatusException,
    WebSocketConnectionClosedException,
    WebSocketException,
    create_connection,
)

from placedefender.config import (
    GQL_WS_URL,
    HTTP_TIMEOUT,
    PLACE_ORIGIN,
    SUBSCRIBE_TIMEOUT,
    TILE_STALE_AFTER,
    USER_AGENT,
)

logger = logging.getLogger(__name__)

CANVAS_IDS     = [   0,    1,    2,    3]
CANVAS_XOFFSET = [   0, 1000,    0, 1000]
CANVAS_YOFFSET = [   0,    0, 1000, 1000]
CANVAS_XSIZE   = [1000, 1000, 1000, 1000]
CANVAS_YSIZE   = [1000, 1000, 1000, 1000]

REPLACE_SUBSCRIPTION = \
    """subscription replace($input: SubscribeInput!) {
  subscribe(input: $input) {
    id
    ... on BasicMessage {
      data {
        __typename
        ... on FullFrameMessageData {
          __typename
          name
          timestamp
        }
      }
      __typename
    }
    __typename
  }
}"""


class CanvasFetchError(Exception):
    """The live canvas could not be fetched or decoded.

    `auth_failed` is set when the service refused the bearer token.
    """

    def __init__(self, message: str, auth_failed: bool = False):
        super().__init__(message)
        self.auth_failed = auth_failed


class CanvasLayout:
    """Maps absolute canvas coordinates onto the fetchable tiles."""

    def __init__(self, ids: Sequence[int] = CANVAS_IDS, xoffset: Sequence[int] = CANVAS_XOFFSET,
                 yoffset: Sequence[int] = CANVAS_YOFFSET, xsize: Sequence[int] = CANVAS_XSIZE,
                 ysize: Sequence[int] = CANVAS_YSIZE):
        self.tiles = list(zip(ids, xoffset, yoffset, xsize, ysize))
        self.max_x = int(max(xo + xs for _, xo, _, xs, _ in self.tiles))
        self.max_y = int(max(yo + ys for _, _, yo, _, ys in self.tiles))

    def locate(self, x: int, y: int) -> Tuple[int, int, int]:
        """Returns (tile_id, x, y) with x and y relative to the tile."""
        for canvas_id, xoffset, yoffset, xsize, ysize in self.tiles:
            if xoffset <= x < xoffset + xsize and yoffset <= y < yoffset + ysize:
                return canvas_id, x - xoffset, y - yoffset
        raise ValueError(f"({x}, {y}) is outside the canvas ({self.max_x}x{self.max_y})")


DEFAULT_LAYOUT = CanvasLayout()


def image_to_npy(img):
    return np.asarray(img).transpose((1, 0, 2))


def decode_image(raw: bytes) -> np.ndarray:
    # raw -> intMatrix([W, H, (RGBA)])
    try:
        im = image_to_npy(Image.open(BytesIO(raw)).convert("RGBA"))
    except (UnidentifiedImageError, OSError) as err:
        raise CanvasFetchError(f"could not decode canvas image: {err}") from err
    if im.dtype != np.uint8 or im.ndim != 3 or im.shape[2] != 4:
        raise CanvasFetchError(f"got image of shape {im.shape} and dtype {im.dtype}, expected [W, H, 4] uint8")
    return im


def frame_name(message) -> Optional[str]:
    """Image URL carried by a subscription message, or None for any other message."""
    node = message
    for key in ("payload", "data", "subscribe", "data"):
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    if isinstance(node, dict) and node.get("name"):
        return node["name"]
    return None


class CanvasFeed:
    """Fetches single canvas tiles: subscribe for the current full frame URL,
    hang up, download and decode the image."""

    def __init__(self, ws_url: str = GQL_WS_URL, timeout: float = SUBSCRIBE_TIMEOUT,
                 http_timeout: float = HTTP_TIMEOUT):
        self.ws_url = ws_url
        self.timeout = timeout
        self.http_timeout = http_timeout

    def _start_message(self, tile_id: int) -> dict:
        return {
            "id"     : "1",
            "type"   : "start",
            "payload": {
                "variables"    : {
                    "input": {
                        "channel": {
                            "teamOwner": "AFD2022",
                            "category" : "CANVAS",
                            "tag"      : str(tile_id),
                        }
                    }
                },
                "extensions"   : {},
                "operationName": "replace",
                "query"        : REPLACE_SUBSCRIPTION,
            },
        }

    def subscribe_frame_url(self, tile_id: int, token: str) -> str:
        deadline = time.monotonic() + self.timeout
        try:
            ws = create_connection(self.ws_url, origin=PLACE_ORIGIN, subprotocols=["graphql-ws"],
                                   header=[f"User-Agent: {USER_AGENT}"], timeout=self.timeout)
        except WebSocketBadStatusException as err:
            raise CanvasFetchError(f"websocket handshake rejected: {err}",
                                   auth_failed=err.status_code in (401, 403)) from err
        except (WebSocketException, OSError) as err:
            raise CanvasFetchError(f"could not open websocket: {err}") from err

        try:
            ws.send(json.dumps({
                "type"   : "connection_init",
                "payload": {
                    "Authorization": "Bearer " + token
                },
            }))
            ws.send(json.dumps(self._start_message(tile_id)))

            while time.monotonic() < deadline:
                message = json.loads(ws.recv())
                if isinstance(message, dict) and message.get("type") == "connection_error":
                    raise CanvasFetchError(f"connection refused: {message.get('payload')}", auth_failed=True)
                name = frame_name(message)
                if name is not None:
                    logger.debug("Got canvas %d: %s", tile_id, name)
                    return name
            raise CanvasFetchError(f"no frame for canvas {tile_id} within {self.timeout}s")
        except WebSocketConnectionClosedException as err:
            raise CanvasFetchError("websocket closed before a frame arrived. Auth issue?", auth_failed=True) from err
        except (WebSocketException, OSError, ValueError) as err:
            raise CanvasFetchError(f"websocket error while waiting for canvas {tile_id}: {err}") from err
        finally:
            ws.close()

    def download(self, url: str) -> np.ndarray:
        try:
            r = requests.get(url, timeout=self.http_timeout)
            r.raise_for_status()
        except requests.RequestException as err:
            raise CanvasFetchError(f"could not download canvas image {url}: {err}") from err
        return decode_image(r.content)

    async def fetch_tile(self, tile_id: int, token: str) -> np.ndarray:
        url = await asyncio.to_thread(self.subscribe_frame_url, tile_id, token)
        return await asyncio.to_thread(self.download, url)


class Tile(NamedTuple):
    pixels: np.ndarray  # [W, H, (RGBA)]
    fetched_at: float


class CanvasViewCache:
    """Time-boxed cache of canvas tiles shared by every placement loop.

    A tile older than `stale_after` seconds is refetched on the next read.
    Concurrent reads of the same stale tile wait on one fetch.
    """

    def __init__(self, feed: CanvasFeed, token_provider: Callable[[], Optional[str]],
                 layout: CanvasLayout = DEFAULT_LAYOUT, stale_after: float = TILE_STALE_AFTER,
                 clock: Callable[[], float] = time.monotonic):
        self.feed = feed
        self.layout = layout
        self.stale_after = stale_after
        self._token_provider = token_provider
        self._clock = clock
        self._tiles: Dict[int, Tile] = {}
        self._locks: Dict[int, asyncio.Lock] = {}

    def _fresh(self, tile: Optional[Tile]) -> bool:
        return tile is not None and self._clock() - tile.fetched_at <= self.stale_after

    async def get_tile(self, tile_id: int) -> Tile:
        tile = self._tiles.get(tile_id)
        if self._fresh(tile):
            return tile

        lock = self._locks.setdefault(tile_id, asyncio.Lock())
        async with lock:
            # someone else may have refreshed it while we waited
            tile = self._tiles.get(tile_id)
            if self._fresh(tile):
                return tile

            token = self._token_provider()
            if not token:
                raise CanvasFetchError("no credential available to read the canvas", auth_failed=True)
            pixels = await self.feed.fetch_tile(tile_id, token)
            tile = Tile(pixels, self._clock())
            self._tiles = {**self._tiles, tile_id: tile}
            return tile

    async def color_at(self, x: int, y: int) -> Tuple[int, int, int, int]:
        tile_id, cx, cy = self.layout.locate(x, y)
        tile = await self.get_tile(tile_id)
        if cx >= tile.pixels.shape[0] or cy >= tile.pixels.shape[1]:
            raise CanvasFetchError(f"canvas {tile_id} is {tile.pixels.shape[:2]}, cannot read ({cx}, {cy})")
        r, g, b, a = (int(v) for v in tile.pixels[cx, cy])
        return r, g, b, a
