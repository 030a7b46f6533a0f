"""
HTTP client for the MakeMeHost game list.

Fetches the refreshable game table(s) and turns each <tr> into a GameRow.

Failure semantics:
    - Any URL failing fails the whole fetch (FeedFetchError). A partial
      listing would otherwise be read as "those games were unhosted".
    - A malformed row raises RowParseError internally and is skipped;
      the rest of the table is still returned.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

import aiohttp
from bs4 import BeautifulSoup

from game_scanner.exceptions import FeedFetchError, RowParseError

from .models import GameRow, Realm

logger = logging.getLogger(__name__)

DEFAULT_FEED_URL = "http://makemehost.com/refresh/divGames-table-mmh.php"

# account, realm, (host slot), title, player counter
MIN_COLUMNS = 5


@dataclass
class FetchResult:
    """Rows extracted from one fetch, plus how many rows were unusable."""
    rows: list[GameRow] = field(default_factory=list)
    skipped: int = 0


def extract_row(cells: Sequence[str]) -> GameRow:
    """
    Build a GameRow from the text of a row's <td> cells.

    Raises:
        RowParseError: If the row is too short or the realm is unknown
    """
    if len(cells) < MIN_COLUMNS:
        raise RowParseError(f"Not enough columns in table row: {len(cells)}")

    account_id = cells[0].strip()
    if not account_id:
        raise RowParseError("Row has an empty account name")

    try:
        realm = Realm.parse(cells[1])
    except ValueError as e:
        raise RowParseError(f"Unknown realm {cells[1]!r}") from e

    return GameRow(
        account_id=account_id,
        realm=realm,
        title=cells[3].strip(),
        player_count=cells[4].strip(),
    )


def parse_rows(html: str) -> FetchResult:
    """
    Parse a game table document.

    The first <tr> is the header and is always dropped.
    """
    soup = BeautifulSoup(html, "html.parser")
    html_rows = soup.find_all("tr")[1:]
    result = FetchResult()

    for html_row in html_rows:
        cells = [td.get_text(strip=True) for td in html_row.find_all("td")]
        try:
            result.rows.append(extract_row(cells))
        except RowParseError as e:
            result.skipped += 1
            logger.warning(f"Skipping malformed row: {e}")

    return result


class FeedClient:
    """
    Async client for the hosted game listing.

    Usage:
        async with FeedClient() as client:
            result = await client.fetch_rows()
            for row in result.rows:
                ...
    """

    def __init__(
        self,
        urls: Optional[Sequence[str]] = None,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 15.0,
    ):
        """
        Initialize the client.

        Args:
            urls: Table documents to fetch (defaults to the MMH list)
            session: Optional aiohttp session (created if not provided)
            timeout: Total request timeout in seconds
        """
        self._urls = list(urls or [DEFAULT_FEED_URL])
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    @property
    def urls(self) -> list[str]:
        return list(self._urls)

    async def __aenter__(self) -> "FeedClient":
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the client session."""
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None

    async def _fetch_document(self, url: str) -> str:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True

        try:
            async with self._session.get(url) as response:
                if response.status != 200:
                    raise FeedFetchError(
                        f"{url} returned HTTP {response.status}",
                        status_code=response.status,
                    )
                return await response.text()
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError as e:
            raise FeedFetchError(f"Timed out fetching {url}") from e
        except aiohttp.ClientError as e:
            raise FeedFetchError(f"Failed to fetch {url}: {e}") from e

    async def fetch_rows(self) -> FetchResult:
        """
        Fetch and parse every configured document.

        Returns:
            Combined FetchResult across all URLs

        Raises:
            FeedFetchError: If any document could not be fetched
        """
        documents = await asyncio.gather(*(self._fetch_document(url) for url in self._urls))

        combined = FetchResult()
        for html in documents:
            result = parse_rows(html)
            combined.rows.extend(result.rows)
            combined.skipped += result.skipped

        return combined
