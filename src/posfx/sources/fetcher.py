"""Priority-ordered fallback across unreliable rate providers.

fetch_with_fallback selects the authoritative rate: sources are tried one
at a time and the first valid quote wins. fetch_all is for comparison
reports only and must never feed the active rate.
"""

import asyncio
from decimal import Decimal

from posfx.exceptions import FallbackExhaustedError, InvalidRateError, SourceError
from posfx.logging import get_logger
from posfx.models import RateBounds, SourceQuote
from posfx.sources.adapter import RateProvider

logger = get_logger(__name__)


class FallbackFetcher:
    """Tries providers in priority order, skipping failures.

    Args:
        provider: Adapter used for every individual source request.
        default_priority: Order used when the caller passes no list.
        bounds: Plausibility bounds; a quote outside them counts as that
            source failing, so the next source is tried.
    """

    def __init__(
        self,
        provider: RateProvider,
        default_priority: list[str],
        bounds: RateBounds | None = None,
    ) -> None:
        self._provider = provider
        self._default_priority = list(default_priority)
        self._bounds = bounds

    async def fetch_with_fallback(
        self, source_ids: list[str] | None = None
    ) -> SourceQuote:
        """Return the first successful quote, trying sources sequentially.

        Raises FallbackExhaustedError (with each source's failure reason)
        when no source produced a valid rate, including for an empty list.
        """
        ordered = self._default_priority if source_ids is None else source_ids
        errors: dict[str, str] = {}

        for source_id in ordered:
            try:
                rate = await self._fetch_checked(source_id)
            except SourceError as e:
                errors[e.source_id] = e.reason
                logger.warning(
                    "source_fetch_failed",
                    source=e.source_id,
                    reason=e.reason,
                    remaining=len(ordered) - len(errors),
                )
                continue

            if errors:
                logger.info(
                    "fallback_source_used",
                    source=source_id,
                    skipped=list(errors),
                )
            return SourceQuote(source=source_id.upper(), rate=rate)

        logger.error("all_sources_failed", sources=list(ordered), errors=errors)
        raise FallbackExhaustedError(errors)

    async def fetch_all(self, source_ids: list[str] | None = None) -> list[SourceQuote]:
        """Fetch every source concurrently and report each outcome.

        Individual failures never abort the batch; results keep input order.
        """
        ordered = self._default_priority if source_ids is None else source_ids
        results = await asyncio.gather(
            *(self._quote(source_id) for source_id in ordered)
        )

        logger.info(
            "all_sources_compared",
            total=len(results),
            ok=sum(1 for q in results if q.ok),
        )
        return list(results)

    async def _fetch_checked(self, source_id: str) -> Decimal:
        """Fetch one source and apply the plausibility bounds."""
        rate = await self._provider.fetch(source_id)
        if self._bounds is None:
            return rate
        try:
            return self._bounds.validate(rate)
        except InvalidRateError as e:
            raise SourceError(source_id.upper(), str(e)) from None

    async def _quote(self, source_id: str) -> SourceQuote:
        """Fetch one source, folding its failure into the quote."""
        try:
            rate = await self._fetch_checked(source_id)
        except SourceError as e:
            return SourceQuote(source=e.source_id, error=e.reason)
        except Exception as e:
            # Adapters should only raise SourceError; keep the batch alive anyway.
            logger.warning("source_compare_error", source=source_id, exc_info=True)
            return SourceQuote(source=source_id.upper(), error=repr(e))
        return SourceQuote(source=source_id.upper(), rate=rate)
