import argparse
import logging
import os
from dataclasses import dataclass
from typing import List, Optional, Sequence

from placedefender.colors import PALETTES
from placedefender.log import LOG_LEVELS

VERSION = "1.0.0"

DAY = 86400
HOUR = 3600

ORDERS_URL = "https://cdn.scoresaber.com/downloads/placeOrders.json"
GQL_URL = "https://gql-realtime-2.reddit.com/query"
GQL_WS_URL = "wss://gql-realtime-2.reddit.com/query"
PLACE_ORIGIN = "https://hot-potato.reddit.com"
REDDIT_PLACE_URL = "https://www.reddit.com/r/place/"

SESSIONS_ENV = "PLACE_SESSIONS"
SESSION_SEPARATOR = ";"
MAX_RECOMMENDED_SESSIONS = 4

USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64; rv:98.0) Gecko/20100101 Firefox/98.0"

# all delays in seconds unless the name says otherwise
ORDER_REFRESH_INTERVAL = 5 * 60
TOKEN_REFRESH_INTERVAL = 30 * 60
AWAIT_ORDERS_DELAY = 2
CANVAS_FAILURE_DELAY = 15
IDLE_DELAY = 5
GATE_SKIP_DELAY = 5
PLACEMENT_FAILURE_DELAY = 10
REVIVE_DELAY = 15
COOLDOWN_SKEW_MS = 3000

TILE_STALE_AFTER = 5
SUBSCRIBE_TIMEOUT = 20
HTTP_TIMEOUT = 30

MODE_SCAN_FIRST = "scan-first"
MODE_SAMPLE = "sample"

logger = logging.getLogger(__name__)


@dataclass
class BotConfig:
    sessions: List[str]
    raw_tokens: bool = False
    mode: str = MODE_SCAN_FIRST
    palette: str = "classic"
    orders_url: str = ORDERS_URL
    log_file: Optional[str] = None
    log_level: str = "info"
    order_refresh_interval: float = ORDER_REFRESH_INTERVAL
    token_refresh_interval: float = TOKEN_REFRESH_INTERVAL


def parse_sessions(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    sessions = [s.strip() for s in raw.split(SESSION_SEPARATOR)]
    sessions = [s for s in sessions if s]
    if len(sessions) > MAX_RECOMMENDED_SESSIONS:
        logger.warning(
            "Running %d accounts from one address; more than %d is likely to get them flagged.",
            len(sessions), MAX_RECOMMENDED_SESSIONS,
        )
    return sessions


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="placedefender",
        description="Keep a region of the r/place canvas matching a list of placement orders.",
    )
    parser.add_argument(
        "sessions", nargs="?",
        help=f"'{SESSION_SEPARATOR}' separated account sessions (or set ${SESSIONS_ENV})",
    )
    parser.add_argument("--raw-tokens", action="store_true",
                        help="treat the entries as bearer tokens instead of sessions")
    parser.add_argument("--mode", choices=[MODE_SCAN_FIRST, MODE_SAMPLE], default=MODE_SCAN_FIRST)
    parser.add_argument("--palette", choices=list(PALETTES), default="classic")
    parser.add_argument("--orders-url", default=ORDERS_URL)
    parser.add_argument("--log-file", default=None, help="append log lines to this file")
    parser.add_argument("--log-level", choices=list(LOG_LEVELS), default="info")
    return parser


def load_config(argv: Optional[Sequence[str]] = None, environ=None) -> BotConfig:
    """Build a BotConfig from the command line, falling back to the environment
    for the session list. The session list may come back empty; the caller
    decides what that means."""
    environ = os.environ if environ is None else environ
    args = build_parser().parse_args(argv)
    raw = args.sessions if args.sessions else environ.get(SESSIONS_ENV, "")

    return BotConfig(
        sessions=parse_sessions(raw),
        raw_tokens=args.raw_tokens,
        mode=args.mode,
        palette=args.palette,
        orders_url=args.orders_url,
        log_file=args.log_file,
        log_level=args.log_level,
    )
