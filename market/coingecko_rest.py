"""
CoinGecko REST API Client.
Handles batching, inter-batch pacing, timeouts and retries for the
public (unauthenticated, rate-limited) price endpoints.
"""

from __future__ import annotations
import asyncio
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, TYPE_CHECKING
import aiohttp
from market.errors import TransientNetworkError, UpstreamDataError, TrackerError
from market.models import PriceRecord, utc_now
import logging

if TYPE_CHECKING:
    from config import RetryPolicy, UpstreamConfig

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


class CoinGeckoRestClient:
    """Async CoinGecko v3 REST wrapper."""

    def __init__(
        self,
        config: "UpstreamConfig",
        batch_size: int = 5,
        batch_pause_sec: float = 30.0,
        sleep: SleepFunc = asyncio.sleep,
        clock: Callable[[], datetime] = utc_now,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.batch_size = batch_size
        self.batch_pause_sec = batch_pause_sec
        self._sleep = sleep
        self._clock = clock
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def _fetch_json(self, endpoint: str, params: Dict[str, str], timeout: float) -> Any:
        """Single GET. Maps every failure onto the error taxonomy."""
        session = await self._get_session()
        url = f"{self.base_url}{endpoint}"
        try:
            async with session.get(
                url, params=params, timeout=aiohttp.ClientTimeout(total=timeout)
            ) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    raise TransientNetworkError(
                        f"GET {endpoint} returned {resp.status}: {body[:200]}",
                        status=resp.status,
                    )
                try:
                    return await resp.json(content_type=None)
                except ValueError as e:
                    raise UpstreamDataError(f"GET {endpoint} returned invalid JSON: {e}") from e
        except asyncio.TimeoutError as e:
            raise TransientNetworkError(f"GET {endpoint} timed out after {timeout}s") from e
        except aiohttp.ClientError as e:
            raise TransientNetworkError(f"GET {endpoint} failed: {e}") from e

    async def _request(
        self,
        endpoint: str,
        params: Dict[str, str],
        timeout: float,
        policy: "RetryPolicy",
    ) -> Any:
        """GET with a fixed-delay retry on transient failures only."""
        for attempt in range(1, policy.max_attempts + 1):
            try:
                return await self._fetch_json(endpoint, params, timeout)
            except TransientNetworkError as e:
                if attempt >= policy.max_attempts:
                    logger.error(f"[REST] GET {endpoint} gave up after {attempt} attempts: {e}")
                    raise
                logger.warning(
                    f"[REST] GET {endpoint} attempt {attempt}/{policy.max_attempts} failed: {e}. "
                    f"Retrying in {policy.delay_sec}s"
                )
                await self._sleep(policy.delay_sec)
        raise TransientNetworkError(f"GET {endpoint}: no attempts configured")

    # ==================== Current Prices ====================

    async def fetch_current_prices(self, coin_ids: Iterable[str]) -> List[PriceRecord]:
        """Fetch current prices for all ids, batch by batch."""
        records: List[PriceRecord] = []
        async for _, batch_records in self.iter_current_price_batches(coin_ids):
            records.extend(batch_records)
        return records

    async def iter_current_price_batches(
        self,
        coin_ids: Iterable[str],
        should_continue: Optional[Callable[[], bool]] = None,
    ) -> AsyncIterator[Tuple[List[str], List[PriceRecord]]]:
        """
        Yield (batch_ids, records) per batch of at most ``batch_size`` ids.
        Batches run sequentially with a pause between them, never after the
        last one. A failed batch is logged and yields no records.
        ``should_continue`` is checked after each pause; False ends the
        iteration before the next request goes out.
        """
        ids = list(coin_ids)
        batches = [ids[i:i + self.batch_size] for i in range(0, len(ids), self.batch_size)]

        for n, batch in enumerate(batches, start=1):
            if n > 1:
                logger.debug(f"[REST] Pausing {self.batch_pause_sec}s before batch {n}")
                await self._sleep(self.batch_pause_sec)
                if should_continue is not None and not should_continue():
                    logger.info(f"[REST] Stopped before batch {n}/{len(batches)}")
                    return

            logger.info(f"[REST] Fetching batch {n}/{len(batches)}: {batch}")
            try:
                records = await self._fetch_batch(batch)
            except TrackerError as e:
                logger.error(f"[REST] Batch {batch} skipped: {e}")
                records = []
            yield batch, records

    async def _fetch_batch(self, batch: List[str]) -> List[PriceRecord]:
        data = await self._request(
            "/coins/markets",
            {
                "vs_currency": self.config.vs_currency,
                "ids": ",".join(batch),
                "order": "market_cap_desc",
                "per_page": str(len(batch)),
                "page": "1",
                "sparkline": "false",
            },
            self.config.current_timeout_sec,
            self.config.current_retry,
        )
        if not isinstance(data, list):
            raise UpstreamDataError(f"/coins/markets returned {type(data).__name__}, expected list")

        fetched_at = self._clock()
        records = []
        for entry in data:
            try:
                records.append(self._parse_market_entry(entry, fetched_at))
            except UpstreamDataError as e:
                logger.warning(f"[REST] Skipping market entry: {e}")
        return records

    def _parse_market_entry(self, entry: Any, fetched_at: datetime) -> PriceRecord:
        if not isinstance(entry, dict):
            raise UpstreamDataError(f"market entry is not an object: {entry!r}")
        for key in ("id", "symbol", "current_price"):
            if entry.get(key) is None:
                raise UpstreamDataError(f"{entry.get('id', '?')}: missing '{key}'")

        last_updated = entry.get("last_updated")
        return PriceRecord(
            coin_id=str(entry["id"]),
            symbol=str(entry["symbol"]),
            price=_to_decimal(entry["current_price"]),
            volume=_to_optional_decimal(entry.get("total_volume")),
            market_cap=_to_optional_decimal(entry.get("market_cap")),
            timestamp=_parse_iso(last_updated) if last_updated else fetched_at,
        )

    # ==================== Historical Prices ====================

    async def fetch_historical_prices(self, coin_id: str, days_back: int) -> List[PriceRecord]:
        """Daily history for one coin. Transient failures propagate after retries."""
        data = await self._request(
            f"/coins/{coin_id}/market_chart",
            {
                "vs_currency": self.config.vs_currency,
                "days": str(days_back),
                "interval": "daily",
            },
            self.config.history_timeout_sec,
            self.config.history_retry,
        )
        records = self._parse_market_chart(coin_id, data)
        if records:
            symbol = await self.get_coin_symbol(coin_id)
            records = [replace(r, symbol=symbol) for r in records]
        return records

    def _parse_market_chart(self, coin_id: str, data: Any) -> List[PriceRecord]:
        """
        Zip the parallel ``prices`` / ``market_caps`` / ``total_volumes``
        arrays of [epoch_ms, value] pairs by index.
        """
        if not isinstance(data, dict) or not isinstance(data.get("prices"), list):
            raise UpstreamDataError(f"{coin_id}: market_chart has no 'prices' array")

        caps = data.get("market_caps") or []
        volumes = data.get("total_volumes") or []
        records = []
        for i, point in enumerate(data["prices"]):
            if not _is_pair(point) or point[1] is None:
                logger.warning(f"[REST] {coin_id}: bad price point {point!r}")
                continue
            try:
                records.append(PriceRecord(
                    coin_id=coin_id,
                    symbol=coin_id,
                    price=_to_decimal(point[1]),
                    market_cap=_series_value(caps, i),
                    volume=_series_value(volumes, i),
                    timestamp=datetime.fromtimestamp(int(point[0]) / 1000, tz=timezone.utc),
                ))
            except (UpstreamDataError, ValueError, TypeError, OverflowError) as e:
                logger.warning(f"[REST] {coin_id}: bad price point {point!r}: {e}")
        return records

    async def get_coin_symbol(self, coin_id: str) -> str:
        """Display ticker for a coin id; falls back to the id itself."""
        try:
            data = await self._fetch_json(
                f"/coins/{coin_id}",
                {
                    "localization": "false",
                    "tickers": "false",
                    "market_data": "false",
                    "community_data": "false",
                    "developer_data": "false",
                    "sparkline": "false",
                },
                self.config.symbol_timeout_sec,
            )
            if isinstance(data, dict) and data.get("symbol"):
                return str(data["symbol"])
        except TrackerError as e:
            logger.warning(f"[REST] {coin_id}: symbol lookup failed ({e}), using id as symbol")
            return coin_id
        logger.warning(f"[REST] {coin_id}: no symbol in response, using id as symbol")
        return coin_id


def _is_pair(point: Any) -> bool:
    return isinstance(point, (list, tuple)) and len(point) >= 2


def _series_value(series: Any, i: int) -> Optional[Decimal]:
    if not isinstance(series, list) or i >= len(series) or not _is_pair(series[i]):
        return None
    return _to_optional_decimal(series[i][1])


def _to_decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise UpstreamDataError(f"not a number: {value!r}") from e


def _to_optional_decimal(value: Any) -> Optional[Decimal]:
    return None if value is None else _to_decimal(value)


def _parse_iso(value: str) -> datetime:
    """Parse CoinGecko's ISO-8601 timestamps (``...Z``) as UTC."""
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as e:
        raise UpstreamDataError(f"bad timestamp {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
