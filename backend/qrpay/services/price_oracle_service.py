"""Price oracle service: cached fiat to crypto quotes with fallback."""

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from qrpay.core.clock import Clock, utcnow
from qrpay.core.errors import PricingUnavailableError, UpstreamTimeoutError, ValidationError
from qrpay.models.price_history import PriceHistory

logger = logging.getLogger(__name__)


class QuoteSource(str, Enum):
    """Where a quote's rate came from."""
    LIVE = "LIVE"  # Fetched from the upstream oracle for this request
    CACHED = "CACHED"  # Served from the in-process cache
    FALLBACK = "FALLBACK"  # Static configured rate; display with a warning


class RateUpstream(Protocol):
    """Anything that can fetch the current fiat-per-crypto rate."""

    async def fetch_rate(self) -> Decimal:
        ...


@dataclass(frozen=True)
class OracleQuote:
    """A rate observation for one currency pair."""

    pair: str
    rate: Decimal
    source: QuoteSource
    obtained_at: datetime
    stale: bool = False  # Cached value served past its TTL because the upstream failed


@dataclass(frozen=True)
class ConversionQuote:
    """A fiat amount priced into the target crypto."""

    source_amount: Decimal
    target_amount: Decimal
    rate: Decimal
    source: QuoteSource
    pair: str
    obtained_at: datetime
    stale: bool = False

    @property
    def is_fallback(self) -> bool:
        return self.source == QuoteSource.FALLBACK


class PriceOracleService:
    """
    Quotes fiat amounts in the target crypto using a cached oracle rate.

    The cache holds one immutable ``OracleQuote`` per pair and is replaced
    whole, so readers never observe a partially written entry. Request-path
    cache misses share a single in-flight fetch, so concurrent callers
    trigger one upstream call and are all released when it succeeds, fails
    or times out. The background refresher fetches on its own and only swaps
    the entry once it holds a validated rate.
    """

    def __init__(
        self,
        upstream: RateUpstream,
        *,
        base_currency: str = "ARS",
        target_currency: str = "USDT",
        cache_ttl_seconds: int = 30,
        refresh_interval_seconds: int = 30,
        timeout_seconds: float = 10.0,
        fallback_rate: Optional[Decimal] = Decimal("1000"),
        target_decimals: int = 6,
        clock: Clock = utcnow,
        session_factory: Optional[async_sessionmaker] = None,
    ):
        self.upstream = upstream
        self.base_currency = base_currency
        self.target_currency = target_currency
        self.cache_ttl = timedelta(seconds=cache_ttl_seconds)
        self.refresh_interval_seconds = refresh_interval_seconds
        self.timeout_seconds = timeout_seconds
        self.fallback_rate = fallback_rate
        self.target_decimals = target_decimals
        self.clock = clock
        self.session_factory = session_factory

        self._cache: Dict[str, OracleQuote] = {}
        self._inflight: Optional[asyncio.Future] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self.last_error: Optional[str] = None
        self.last_refresh_at: Optional[datetime] = None

    @property
    def pair(self) -> str:
        return f"{self.target_currency}/{self.base_currency}"

    @property
    def is_refreshing(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    @staticmethod
    def is_valid_rate(rate: Any) -> bool:
        """A usable rate is a finite, strictly positive number."""
        try:
            value = Decimal(str(rate))
        except (InvalidOperation, ValueError, TypeError):
            return False
        return value.is_finite() and value > 0

    def _is_fresh(self, entry: OracleQuote, now: datetime) -> bool:
        return now - entry.obtained_at < self.cache_ttl

    async def quote(self, source_amount: Decimal) -> ConversionQuote:
        """
        Price a fiat amount in the target crypto.

        Args:
            source_amount: Fiat amount (must be positive)

        Returns:
            ConversionQuote whose ``source`` tells LIVE, CACHED and FALLBACK apart

        Raises:
            ValidationError: If the amount is not positive
            PricingUnavailableError: If no cache exists and no valid fallback
                rate is configured
        """
        if source_amount <= 0:
            raise ValidationError("Amount to quote must be positive", amount=str(source_amount))

        oracle_quote = await self.get_rate()
        step = Decimal(1).scaleb(-self.target_decimals)
        target_amount = (Decimal(source_amount) / oracle_quote.rate).quantize(step, rounding=ROUND_HALF_UP)

        return ConversionQuote(
            source_amount=Decimal(source_amount),
            target_amount=target_amount,
            rate=oracle_quote.rate,
            source=oracle_quote.source,
            pair=oracle_quote.pair,
            obtained_at=oracle_quote.obtained_at,
            stale=oracle_quote.stale,
        )

    async def get_rate(self) -> OracleQuote:
        """Return the current rate: fresh cache, then live, then stale cache, then fallback."""
        entry = self._cache.get(self.pair)
        if entry and self._is_fresh(entry, self.clock()):
            return replace(entry, source=QuoteSource.CACHED)

        # One upstream call per miss; every waiter shares its outcome
        fill = self._inflight
        joined = fill is not None
        if fill is None:
            fill = self._inflight = asyncio.ensure_future(self._fill())
            fill.add_done_callback(self._clear_inflight)

        live = await asyncio.shield(fill)
        if live is not None:
            return replace(live, source=QuoteSource.CACHED) if joined else live

        if entry is not None:
            logger.warning(
                f"⚠️ Serving stale {self.pair} rate {entry.rate} obtained at "
                f"{entry.obtained_at.isoformat()}"
            )
            return replace(entry, source=QuoteSource.CACHED, stale=True)

        return self._fallback_quote()

    async def _fill(self) -> Optional[OracleQuote]:
        """Request-path fetch; returns None when the oracle gave nothing usable."""
        try:
            rate = await self._fetch_upstream()
        except Exception as e:
            self.last_error = str(e)
            logger.warning(f"Oracle fetch failed on request path: {e}")
            return None
        return await self._accept(rate)

    def _clear_inflight(self, fill: asyncio.Future) -> None:
        if self._inflight is fill:
            self._inflight = None

    async def _fetch_upstream(self) -> Decimal:
        try:
            return await asyncio.wait_for(self.upstream.fetch_rate(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise UpstreamTimeoutError(
                f"Oracle did not answer within {self.timeout_seconds}s"
            ) from e

    async def _accept(self, rate: Any) -> Optional[OracleQuote]:
        """Validate an upstream rate and, if usable, swap it into the cache."""
        if not self.is_valid_rate(rate):
            self.last_error = f"Invalid rate from oracle: {rate}"
            logger.warning(f"⚠️ Invalid {self.pair} rate from oracle: {rate}, not cached")
            return None

        quote = OracleQuote(
            pair=self.pair,
            rate=Decimal(str(rate)),
            source=QuoteSource.LIVE,
            obtained_at=self.clock(),
        )
        self._cache[self.pair] = quote
        self.last_error = None
        await self._record_history(quote)

        logger.info(f"✅ {self.pair} rate from oracle: {quote.rate}")
        return quote

    def _fallback_quote(self) -> OracleQuote:
        if not self.is_valid_rate(self.fallback_rate):
            raise PricingUnavailableError(
                f"No {self.pair} rate available: oracle failed, cache empty and no fallback configured"
            )

        logger.warning(
            f"⚠️ Using FALLBACK {self.pair} rate {self.fallback_rate}; "
            f"not suitable for final settlement display without a warning"
        )
        return OracleQuote(
            pair=self.pair,
            rate=Decimal(str(self.fallback_rate)),
            source=QuoteSource.FALLBACK,
            obtained_at=self.clock(),
        )

    async def _record_history(self, quote: OracleQuote) -> None:
        if self.session_factory is None:
            return

        try:
            async with self.session_factory() as session:
                session.add(PriceHistory(
                    base_currency=self.base_currency,
                    quote_currency=self.target_currency,
                    rate=quote.rate,
                    source="STARKNET_ORACLE",
                    oracle_address=getattr(self.upstream, "oracle_address", None),
                    obtained_at=quote.obtained_at,
                ))
                await session.commit()
        except Exception as e:
            logger.warning(f"Could not record {self.pair} price history: {e}")

    async def refresh(self, retries: int = 1) -> Optional[OracleQuote]:
        """
        Fetch the rate once for the background refresher.

        Timeouts are retried up to ``retries`` times. Failures are logged and
        leave the cache untouched.
        """
        attempt = 0
        while True:
            try:
                rate = await self._fetch_upstream()
            except UpstreamTimeoutError as e:
                if attempt < retries:
                    attempt += 1
                    logger.info(f"Oracle refresh timed out, retrying ({attempt}/{retries})")
                    continue
                self.last_error = str(e)
                logger.warning(f"❌ Oracle refresh failed: {e}")
                return None
            except Exception as e:
                self.last_error = str(e)
                logger.error(f"❌ Oracle refresh failed: {e}", exc_info=True)
                return None

            self.last_refresh_at = self.clock()
            return await self._accept(rate)

    async def _refresh_loop(self) -> None:
        logger.info(f"🔄 Oracle refresher started ({self.pair} every {self.refresh_interval_seconds}s)")
        while True:
            await self.refresh()
            await asyncio.sleep(self.refresh_interval_seconds)

    async def start(self) -> None:
        """Start the background refresher; idempotent."""
        if self.is_refreshing:
            return
        self._refresh_task = asyncio.create_task(self._refresh_loop(), name="oracle-refresher")

    async def stop(self) -> None:
        task, self._refresh_task = self._refresh_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Oracle refresher stopped")

    def status(self) -> Dict[str, Any]:
        """Health snapshot for the oracle status endpoint."""
        entry = self._cache.get(self.pair)
        now = self.clock()
        return {
            "pair": self.pair,
            "is_active": entry is not None and self._is_fresh(entry, now),
            "current_rate": entry.rate if entry else None,
            "obtained_at": entry.obtained_at if entry else None,
            "age_seconds": (now - entry.obtained_at).total_seconds() if entry else None,
            "fallback_rate": self.fallback_rate,
            "oracle_address": getattr(self.upstream, "oracle_address", None),
            "refresher_running": self.is_refreshing,
            "last_refresh_at": self.last_refresh_at,
            "last_error": self.last_error,
        }

    async def get_price_history(
        self,
        db: AsyncSession,
        hours: int = 24,
        limit: int = 100
    ) -> list[PriceHistory]:
        """Audit trail of live rates for this pair, newest first."""
        since = self.clock() - timedelta(hours=hours)
        result = await db.execute(
            select(PriceHistory)
            .where(
                PriceHistory.base_currency == self.base_currency,
                PriceHistory.quote_currency == self.target_currency,
                PriceHistory.obtained_at >= since,
            )
            .order_by(PriceHistory.obtained_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
