import pytest

from warranty_import.errors import AccountLookupError, CrmApiError
from warranty_import.reconciliation import AccountReconciler, unmatched_partner_names
from warranty_import.schemas import SaleRecord


def test_lookup_runs_once_per_distinct_partner_set(make_row, fake_crm) -> None:
    partners = ["Boulanger Lyon", "Darty Nantes", "Fnac Lille"]
    sales = [
        SaleRecord.from_raw(make_row(partner_name=partners[index % 3], invoice_number=f"FAC-{index:04d}"))
        for index in range(100)
    ]

    enriched = AccountReconciler(fake_crm.find_account_ids).reconcile(sales)

    assert fake_crm.lookup_calls == [partners]
    assert len(enriched) == 100
    assert [item.sale for item in enriched] == sales


def test_unmatched_partner_gets_empty_account_id(make_row, fake_crm) -> None:
    sales = [
        SaleRecord.from_raw(make_row(partner_name="Boulanger Lyon")),
        SaleRecord.from_raw(make_row(partner_name="Inconnu SARL")),
        SaleRecord.from_raw(make_row(partner_name="boulanger lyon")),
    ]

    enriched = AccountReconciler(fake_crm.find_account_ids).reconcile(sales)

    assert [item.account_id for item in enriched] == ["0018d00000Xyz12AAA", "", ""]
    assert unmatched_partner_names(enriched) == ["Inconnu SARL", "boulanger lyon"]


def test_no_lookup_for_empty_input(fake_crm) -> None:
    assert AccountReconciler(fake_crm.find_account_ids).reconcile([]) == []
    assert fake_crm.lookup_calls == []


def test_lookup_failure_is_fatal(make_row) -> None:
    def failing_lookup(names: list[str]) -> dict[str, str]:
        raise CrmApiError("GET /query returned 503", status_code=503)

    reconciler = AccountReconciler(failing_lookup)

    with pytest.raises(AccountLookupError) as excinfo:
        reconciler.reconcile([SaleRecord.from_raw(make_row())])

    assert isinstance(excinfo.value.__cause__, CrmApiError)
