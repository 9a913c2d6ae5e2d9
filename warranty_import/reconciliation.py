from collections.abc import Callable, Mapping, Sequence
import logging
import time

from warranty_import.errors import AccountLookupError, WarrantyImportError
from warranty_import.schemas import EnrichedSale, SaleRecord


logger = logging.getLogger(__name__)

AccountLookup = Callable[[list[str]], Mapping[str, str]]


def distinct_partner_names(sales: Sequence[SaleRecord]) -> list[str]:
    # Exact, case-sensitive match; first-seen order keeps lookup queries stable.
    return list(dict.fromkeys(sale.partner_name for sale in sales))


def unmatched_partner_names(enriched: Sequence[EnrichedSale]) -> list[str]:
    return list(dict.fromkeys(item.sale.partner_name for item in enriched if not item.is_matched))


class AccountReconciler:
    """Resolves partner names to account ids with one lookup per batch of sales."""

    def __init__(self, lookup: AccountLookup) -> None:
        self.lookup = lookup

    def reconcile(self, sales: Sequence[SaleRecord]) -> list[EnrichedSale]:
        started = time.monotonic()
        partner_names = distinct_partner_names(sales)
        logger.info(
            "starting partner reconciliation",
            extra={"sales_count": len(sales), "partner_count": len(partner_names)},
        )

        account_ids: Mapping[str, str] = {}
        if partner_names:
            try:
                account_ids = self.lookup(partner_names)
            except WarrantyImportError as exc:
                raise AccountLookupError(f"failed to reconcile partners: {exc}") from exc

        enriched = [EnrichedSale(sale=sale, account_id=account_ids.get(sale.partner_name, "")) for sale in sales]

        unmatched = unmatched_partner_names(enriched)
        if unmatched:
            logger.warning(
                "some partners not found in account registry",
                extra={"unmapped_partners": unmatched, "unmapped_count": len(unmatched)},
            )

        logger.info(
            "partner reconciliation completed",
            extra={
                "enriched_sales": len(enriched),
                "sales_with_account_id": sum(1 for item in enriched if item.is_matched),
                "sales_without_account_id": sum(1 for item in enriched if not item.is_matched),
                "duration_seconds": round(time.monotonic() - started, 2),
            },
        )
        return enriched
