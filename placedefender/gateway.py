import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, Union

import requests

from placedefender.canvas import DEFAULT_LAYOUT, CanvasLayout
from placedefender.config import GQL_URL, HTTP_TIMEOUT, PLACE_ORIGIN, USER_AGENT

logger = logging.getLogger(__name__)

SET_PIXEL_QUERY = \
    """mutation setPixel($input: ActInput!) {
  act(input: $input) {
    data {
      ... on BasicMessage {
        id
        data {
          ... on GetUserCooldownResponseMessageData {
            nextAvailablePixelTimestamp
            __typename
          }
          ... on SetPixelResponseMessageData {
            timestamp
            __typename
          }
          __typename
        }
        __typename
      }
      __typename
    }
    __typename
  }
}
"""

HEADERS = {
    "accept"                      : "*/*",
    "apollographql-client-name"   : "mona-lisa",
    "apollographql-client-version": "0.0.1",
    "content-type"                : "application/json",
    "origin"                      : PLACE_ORIGIN,
    "referer"                     : PLACE_ORIGIN + "/",
    "sec-fetch-site"              : "same-site",
    "user-agent"                  : USER_AGENT,
}

AUTH_ERROR_HINTS = ("unauthorized", "authentication", "authorization", "forbidden", "token")


@dataclass(frozen=True)
class Accepted:
    next_allowed_at: int  # epoch ms


@dataclass(frozen=True)
class RateLimited:
    next_allowed_at: int  # epoch ms


@dataclass(frozen=True)
class TransportFailure:
    cause: str
    auth_expired: bool = False


@dataclass(frozen=True)
class MalformedResponse:
    cause: str
    auth_expired: bool = False
    raw: Any = None


PlacementResult = Union[Accepted, RateLimited, TransportFailure, MalformedResponse]


def _mentions_auth(errors) -> bool:
    text = str(errors).lower()
    return any(hint in text for hint in AUTH_ERROR_HINTS)


def parse_placement_response(payload, status_code: int = 200) -> PlacementResult:
    """Normalise both shapes of a setPixel reply.

    A refused placement comes back as a top-level `errors` list whose first
    entry carries `extensions.nextAvailablePixelTs`; an accepted one carries
    `nextAvailablePixelTimestamp` deep inside `data`.
    """
    auth_expired = status_code in (401, 403)
    if not isinstance(payload, dict):
        return MalformedResponse(f"expected a JSON object (status {status_code})", auth_expired, payload)

    errors = payload.get("errors")
    if errors:
        try:
            next_ts = errors[0]["extensions"]["nextAvailablePixelTs"]
            return RateLimited(math.floor(next_ts))
        except (IndexError, KeyError, TypeError, ValueError, OverflowError):
            return MalformedResponse("error without a cooldown", auth_expired or _mentions_auth(errors), payload)

    try:
        next_ts = payload["data"]["act"]["data"][0]["data"]["nextAvailablePixelTimestamp"]
        return Accepted(math.floor(next_ts))
    except (IndexError, KeyError, TypeError, ValueError, OverflowError):
        return MalformedResponse(f"no cooldown in response (status {status_code})", auth_expired, payload)


class PlacementGateway:
    """Sends setPixel mutations; never raises for a remote failure."""

    def __init__(self, url: str = GQL_URL, layout: CanvasLayout = DEFAULT_LAYOUT,
                 timeout: float = HTTP_TIMEOUT):
        self.url = url
        self.layout = layout
        self.timeout = timeout

    def build_payload(self, x: int, y: int, color_id: int) -> dict:
        canvas_id, cx, cy = self.layout.locate(x, y)
        return {
            "operationName": "setPixel",
            "query"        : SET_PIXEL_QUERY,
            "variables"    : {
                "input": {
                    "actionName"      : "r/replace:set_pixel",
                    "PixelMessageData": {
                        "canvasIndex": canvas_id,
                        "colorIndex" : color_id,
                        "coordinate" : {
                            "x": cx,
                            "y": cy
                        }
                    },
                }
            }
        }

    def place_tile(self, x: int, y: int, color_id: int, token: str) -> PlacementResult:
        headers = HEADERS.copy()
        headers["authorization"] = "Bearer " + token
        try:
            r = requests.post(self.url, json=self.build_payload(x, y, color_id), headers=headers,
                              timeout=self.timeout)
        except requests.RequestException as err:
            return TransportFailure(str(err))

        try:
            payload = r.json()
        except ValueError:
            return MalformedResponse(
                f"response was not JSON (status {r.status_code})",
                r.status_code in (401, 403),
                r.text[:500],
            )
        logger.debug("setPixel response %d: %s", r.status_code, payload)
        return parse_placement_response(payload, r.status_code)

    async def submit(self, x: int, y: int, color_id: int, token: str) -> PlacementResult:
        return await asyncio.to_thread(self.place_tile, x, y, color_id, token)
