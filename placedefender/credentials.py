import asyncio
import json
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

import requests
from bs4 import BeautifulSoup

from placedefender.config import HTTP_TIMEOUT, REDDIT_PLACE_URL, TOKEN_REFRESH_INTERVAL, USER_AGENT

logger = logging.getLogger(__name__)

DATA_SCRIPT_PREFIX = "window.__r = "


class CredentialError(Exception):
    pass


def extract_access_token(html: str) -> str:
    """Read the bearer token out of a logged-in reddit page."""
    script = BeautifulSoup(html, "html.parser").find("script", {"id": "data"})
    if script is not None and script.string:
        data_str = script.string.strip()
        if data_str.startswith(DATA_SCRIPT_PREFIX):
            data_str = data_str[len(DATA_SCRIPT_PREFIX):]
        data_str = data_str.rstrip(";")
        try:
            token = json.loads(data_str)["user"]["session"]["accessToken"]
        except (ValueError, KeyError, TypeError) as err:
            raise CredentialError(f"unexpected page data: {err!r}") from err
        if token:
            return token

    # pages without the data blob still inline the session json
    parts = html.split('"accessToken":"', 1)
    if len(parts) == 2 and '"' in parts[1]:
        token = parts[1].split('"', 1)[0]
        if token:
            return token
    raise CredentialError("no access token on page, session expired or logged out")


class CredentialPool:
    """Current bearer token for each account.

    Accounts are identified by their session string; the first one is the
    default account, and the one canvas reads prefer. With `raw_tokens` the
    entries are bearer tokens already and are never refreshed.
    """

    def __init__(self, sessions: Sequence[str], raw_tokens: bool = False, timeout: float = HTTP_TIMEOUT):
        if not sessions:
            raise CredentialError("no account sessions given")
        self.accounts: List[str] = list(dict.fromkeys(sessions))
        self.raw_tokens = raw_tokens
        self.timeout = timeout
        self._tokens: Dict[str, str] = {s: s for s in self.accounts} if raw_tokens else {}
        self._pending: Dict[str, asyncio.Task] = {}

    @property
    def default(self) -> str:
        return self.accounts[0]

    @property
    def ready(self) -> bool:
        return bool(self._tokens)

    def label(self, account: str) -> str:
        return f"account #{self.accounts.index(account) + 1}"

    def token_for(self, account: str) -> Optional[str]:
        return self._tokens.get(account)

    def canvas_account(self) -> str:
        """Account whose token reads the canvas: the default one while it has
        a token, otherwise the first account that does."""
        tokens = self._tokens
        for account in self.accounts:
            if tokens.get(account):
                return account
        return self.default

    def canvas_token(self) -> Optional[str]:
        return self._tokens.get(self.canvas_account())

    def _fetch_token(self, session: str) -> str:
        r = requests.get(
            REDDIT_PLACE_URL,
            cookies={"reddit_session": session},
            headers={"User-Agent": USER_AGENT},
            timeout=self.timeout,
        )
        if r.status_code != 200:
            raise CredentialError(f"token page returned status {r.status_code}")
        return extract_access_token(r.text)

    async def refresh(self, account: str) -> bool:
        if self.raw_tokens:
            logger.warning("Token for %s was given directly and cannot be refreshed.", self.label(account))
            return False
        try:
            token = await asyncio.to_thread(self._fetch_token, account)
        except (requests.RequestException, CredentialError) as err:
            logger.warning("Could not refresh access token for %s: %s", self.label(account), err)
            return False

        self._tokens = {**self._tokens, account: token}
        logger.info("Access token retrieved for %s.", self.label(account))
        return True

    async def refresh_all(self):
        if self.raw_tokens:
            return
        for account in self.accounts:
            await self.refresh(account)

    def request_refresh(self, account: str) -> asyncio.Task:
        """Start a refresh of one account in the background; repeated requests
        while one is running share it."""
        task = self._pending.get(account)
        if task is None or task.done():
            task = asyncio.create_task(self.refresh(account))
            self._pending[account] = task
        return task

    async def run(self, interval: float = TOKEN_REFRESH_INTERVAL,
                  sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                  refresh_first: bool = True):
        if self.raw_tokens:
            return
        if refresh_first:
            await self.refresh_all()
        while True:
            await sleep(interval)
            await self.refresh_all()
