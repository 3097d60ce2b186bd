"""Dependent recalculation: keep USD receivables in step with the active rate.

For every open USD receivable, amount = base_amount_usd * rate, rounded to
display precision. base_amount_usd and exchange_rate_at_creation are never
written. The pass is idempotent, so re-running it against the current rate
heals anything a previous pass missed.

Each record is updated independently. A failure on one receivable is
counted and logged, never raised, and never stops the rest of the batch.
"""

from decimal import Decimal

from posfx.accounts.receivables import ReceivableRepository, quantize_amount
from posfx.logging import get_logger
from posfx.models import RecalculationResult

logger = get_logger(__name__)


class RecalculationService:
    """Recomputes local-currency amounts of open USD receivables.

    Args:
        repository: Collaborator implementing the receivables contract.
        precision: Decimal places of the local currency.
    """

    def __init__(self, repository: ReceivableRepository, precision: int = 2) -> None:
        self._repository = repository
        self._precision = precision

    async def recalculate_on_rate_change(self, new_rate: Decimal) -> RecalculationResult:
        """Recompute every open USD receivable against new_rate.

        Errors from the selection query propagate; per-record errors are
        folded into the returned counts.
        """
        receivables = await self._repository.find_open_usd_receivables()
        result = RecalculationResult()

        for receivable in receivables:
            if receivable.base_amount_usd is None:
                continue

            target = quantize_amount(receivable.base_amount_usd * new_rate, self._precision)
            if receivable.amount == target:
                result.unchanged += 1
                continue

            try:
                ok = await self._repository.update_receivable_amount(receivable.id, target)
            except Exception:
                ok = False
                logger.warning(
                    "receivable_recalc_error",
                    receivable_id=receivable.id,
                    exc_info=True,
                )

            if ok:
                result.updated += 1
                logger.debug(
                    "receivable_recalculated",
                    receivable_id=receivable.id,
                    old_amount=str(receivable.amount),
                    new_amount=str(target),
                )
            else:
                result.failed += 1
                result.failed_ids.append(receivable.id)

        log = logger.warning if result.failed else logger.info
        log(
            "recalculation_complete",
            rate=str(new_rate),
            updated=result.updated,
            unchanged=result.unchanged,
            failed=result.failed,
        )
        return result
