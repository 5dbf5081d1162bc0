"""
SMX Chart Votes - Chart Catalog

Fetches songs and charts from the SMX API (https://smx.573.no/api), joins
them, and corrects difficulty labels before serving them to clients.

The API's own variant labels are unreliable: a song may carry ``full`` and
``full2`` charts where ``full2`` is actually the easier one, or a lone
``wild2`` with no base chart.  Labels are therefore recomputed from the raw
difficulty values:

- two charts of the same base type on one song: the harder one becomes the
  "+" variant (``full2`` / ``full+``), the easier one the base (``full``);
- a single chart of a type: always the base label;
- three or more: left as the API reports them.

The merged list is cached in memory for ``CHART_CACHE_TTL`` seconds.  If a
refresh fails the previous list is served; only a cold cache surfaces the
error.
"""

import asyncio
import time
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional

import httpx
from loguru import logger
from pydantic import TypeAdapter

from chartvote.config import (
    APP_VERSION,
    CHART_CACHE_TTL,
    REMOVED_SONG_TITLES,
    SMX_API_URL,
    UPSTREAM_TIMEOUT,
    VARIANT_DISPLAY_SUFFIX,
    VARIANT_NAME_SUFFIX,
)
from chartvote.errors import UpstreamError
from chartvote.models import Chart, ChartWithSong, Song

_SONG_LIST = TypeAdapter(List[Song])
_CHART_LIST = TypeAdapter(List[Chart])

_USER_AGENT = f"SMXChartVotes/{APP_VERSION}"


# ---------------------------------------------------------------------------
# Label correction
# ---------------------------------------------------------------------------


def base_type(difficulty_name: str) -> str:
    """Strip the variant marker from a raw type name (``full2`` -> ``full``)."""
    return difficulty_name.removesuffix(VARIANT_NAME_SUFFIX)


def correct_labels(charts: Iterable[Chart]) -> List[Chart]:
    """
    Recompute ``difficulty_name`` / ``difficulty_display`` for every chart.

    Charts are grouped by (song_id, base type).  Returns new Chart objects
    in the input order; the inputs are not modified.
    """
    charts = list(charts)

    # (song_id, base type) -> positions in `charts`
    groups: Dict[tuple, List[int]] = defaultdict(list)
    for pos, chart in enumerate(charts):
        groups[(chart.song_id, base_type(chart.difficulty_name))].append(pos)

    labels: Dict[int, tuple] = {}
    for (_, base), positions in groups.items():
        if len(positions) == 2:
            # sorted() is stable: on a tie the later chart gets the "+"
            lower, higher = sorted(positions, key=lambda p: charts[p].difficulty)
            labels[lower] = (base, base)
            labels[higher] = (
                base + VARIANT_NAME_SUFFIX,
                base + VARIANT_DISPLAY_SUFFIX,
            )
        elif len(positions) == 1:
            labels[positions[0]] = (base, base)

    corrected = []
    for pos, chart in enumerate(charts):
        label = labels.get(pos)
        if label is None:
            corrected.append(chart)
            continue
        name, display = label
        corrected.append(
            chart.model_copy(
                update={"difficulty_name": name, "difficulty_display": display}
            )
        )
    return corrected


def merge_charts(
    songs: Iterable[Song],
    charts: Iterable[Chart],
    removed_titles: Iterable[str] = REMOVED_SONG_TITLES,
) -> List[ChartWithSong]:
    """
    Join charts to their songs, drop orphaned and removed songs, and correct
    the difficulty labels of what remains.
    """
    song_map = {song.id: song for song in songs}
    removed = set(removed_titles)

    kept = []
    dropped = 0
    for chart in charts:
        song = song_map.get(chart.song_id)
        if song is None or song.title in removed:
            dropped += 1
            continue
        kept.append(chart)

    if dropped:
        logger.debug("Dropped {} charts with missing or removed songs", dropped)

    return [
        ChartWithSong(**chart.model_dump(), song=song_map[chart.song_id])
        for chart in correct_labels(kept)
    ]


# ---------------------------------------------------------------------------
# Cached catalog
# ---------------------------------------------------------------------------


class ChartCatalog:
    """
    In-memory cache of the merged chart list.

    No locking: two requests hitting an expired cache at the same time both
    fetch, and the last one to finish wins.
    """

    def __init__(
        self,
        base_url: str = SMX_API_URL,
        ttl: float = CHART_CACHE_TTL,
        timeout: float = UPSTREAM_TIMEOUT,
        removed_titles: Iterable[str] = REMOVED_SONG_TITLES,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.ttl = ttl
        self.timeout = timeout
        self.removed_titles = frozenset(removed_titles)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._charts: Optional[List[ChartWithSong]] = None
        self._fetched_at: float = 0.0
        self._last_error: Optional[str] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={"User-Agent": _USER_AGENT, "Accept": "application/json"},
            )
        return self._client

    async def _fetch(self) -> List[ChartWithSong]:
        """Fetch songs and charts concurrently and merge them."""
        client = self._get_client()
        try:
            results = await asyncio.gather(
                client.get("/songs"), client.get("/charts"), return_exceptions=True
            )
            # Both requests have settled; surface the first failure
            for result in results:
                if isinstance(result, BaseException):
                    raise result
            songs_resp, charts_resp = results
            songs_resp.raise_for_status()
            charts_resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise UpstreamError(
                f"SMX API returned HTTP {e.response.status_code} for {e.request.url}"
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"SMX API request failed: {e!r}") from e

        try:
            songs = _SONG_LIST.validate_python(songs_resp.json())
            charts = _CHART_LIST.validate_python(charts_resp.json())
        except ValueError as e:
            # json.JSONDecodeError and pydantic.ValidationError both land here
            raise UpstreamError(f"SMX API returned unusable data: {e}") from e

        return merge_charts(songs, charts, self.removed_titles)

    def is_fresh(self, now: Optional[float] = None) -> bool:
        if self._charts is None:
            return False
        now = time.time() if now is None else now
        return now - self._fetched_at < self.ttl

    async def get_charts(self) -> List[ChartWithSong]:
        """Return the merged chart list, refreshing it when the cache has expired."""
        if self.is_fresh():
            return self._charts
        return await self.refresh()

    async def refresh(self) -> List[ChartWithSong]:
        """
        Refetch from the SMX API regardless of cache age.

        On failure the last good list is returned if there is one;
        otherwise :class:`UpstreamError` propagates.
        """
        started = time.time()
        try:
            charts = await self._fetch()
        except UpstreamError as e:
            self._last_error = str(e)
            if self._charts is not None:
                logger.warning(
                    "⚠️ Chart refresh failed, serving cached list ({} charts, {:.0f}s old): {}",
                    len(self._charts),
                    started - self._fetched_at,
                    e,
                )
                return self._charts
            logger.error("❌ Chart refresh failed with no cached list: {}", e)
            raise

        self._charts = charts
        self._fetched_at = started
        self._last_error = None
        logger.info(
            "🔄 Chart cache refreshed: {} charts in {:.2f}s",
            len(charts),
            time.time() - started,
        )
        return charts

    def status(self) -> Dict[str, Any]:
        """Snapshot of the cache state for health reporting."""
        age = round(time.time() - self._fetched_at, 1) if self._charts is not None else None
        return {
            "source": self.base_url,
            "cached_charts": len(self._charts) if self._charts is not None else 0,
            "age_seconds": age,
            "ttl_seconds": self.ttl,
            "fresh": self.is_fresh(),
            "last_error": self._last_error,
        }

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None


# ---------------------------------------------------------------------------
# Shared instance
# ---------------------------------------------------------------------------
_catalog: Optional[ChartCatalog] = None


def get_catalog() -> ChartCatalog:
    """Return the process-wide catalog, creating it on first use."""
    global _catalog
    if _catalog is None:
        _catalog = ChartCatalog()
    return _catalog


async def close_catalog() -> None:
    """Close the shared catalog's HTTP client and forget the instance."""
    global _catalog
    if _catalog is not None:
        await _catalog.aclose()
        _catalog = None
