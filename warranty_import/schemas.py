from dataclasses import dataclass, fields


RawRecord = dict[str, str]

TERMINAL_JOB_STATES = frozenset({"JobComplete", "Failed", "Aborted"})


@dataclass(frozen=True)
class SaleRecord:
    partner_name: str
    customer_email: str
    product_name: str
    warranty_code: str
    warranty_label: str
    warranty_start_date: str
    warranty_end_date: str
    product_purchase_price: str
    warranty_purchase_date: str
    invoice_number: str
    purchase_date: str
    customer_address_street: str
    customer_address_city: str
    customer_address_zipcode: str
    customer_address_country: str

    @classmethod
    def from_raw(cls, raw: RawRecord) -> "SaleRecord":
        return cls(**{name: raw[name] for name in FIELD_NAMES})


# Column order of the partner file, in header order.
FIELD_NAMES: tuple[str, ...] = tuple(field.name for field in fields(SaleRecord))


@dataclass(frozen=True)
class InvalidRecord:
    record_index: int
    record: RawRecord
    reasons: tuple[str, ...]

    @property
    def reason(self) -> str:
        return "; ".join(self.reasons)


@dataclass(frozen=True)
class EnrichedSale:
    sale: SaleRecord
    account_id: str

    @property
    def is_matched(self) -> bool:
        return bool(self.account_id)


@dataclass(frozen=True)
class JobSnapshot:
    job_id: str
    state: str
    records_processed: int
    records_failed: int

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_JOB_STATES


@dataclass(frozen=True)
class BulkOutcome:
    job_id: str
    state: str
    success_count: int
    error_count: int
    failed_results: str | None


@dataclass(frozen=True)
class ImportResult:
    import_id: str
    status: str
    total_lines: int
    valid_records: int
    invalid_records: int
    unmatched_records: int
    job_id: str
    job_state: str | None
    success_count: int
    error_count: int
    validation_report_path: str | None
    bulk_report_path: str | None
    duration_seconds: float
