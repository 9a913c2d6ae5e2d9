from collections.abc import Callable, Sequence
from datetime import date
from decimal import Decimal
import logging
import re
import time

from email_validator import EmailNotValidError, validate_email

from warranty_import.schemas import FIELD_NAMES, InvalidRecord, RawRecord, SaleRecord


logger = logging.getLogger(__name__)

Rule = Callable[[RawRecord], list[str]]

DATE_FIELDS = ("warranty_start_date", "warranty_end_date", "warranty_purchase_date", "purchase_date")
DATE_PATTERN = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")
NUMERIC_PATTERN = re.compile(r"[+-]?(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")
WARRANTY_CODE_PATTERN = re.compile(r"[A-Za-z0-9]+")
WARRANTY_CODE_MAX_LENGTH = 50
PRICE_MAX_DECIMALS = 2


def check_required_fields(record: RawRecord) -> list[str]:
    reasons: list[str] = []
    for field in FIELD_NAMES:
        value = record.get(field)
        if value is None or not value.strip():
            reasons.append(f"Missing or empty field: {field}")
    return reasons


def _is_calendar_date(value: str) -> bool:
    if not DATE_PATTERN.fullmatch(value):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def check_date_formats(record: RawRecord) -> list[str]:
    return [
        f"Invalid date format for {field} (expected YYYY-MM-DD): {record[field]}"
        for field in DATE_FIELDS
        if not _is_calendar_date(record[field])
    ]


def check_email(record: RawRecord) -> list[str]:
    value = record["customer_email"]
    try:
        validate_email(
            value.strip(),
            check_deliverability=False,
            allow_smtputf8=False,
            allow_quoted_local=True,
            allow_domain_literal=True,
            globally_deliverable=False,
            test_environment=True,
        )
    except EmailNotValidError:
        return [f"Invalid email format: {value}"]
    return []


def check_price(record: RawRecord) -> list[str]:
    value = record["product_purchase_price"]
    text = value.strip()
    amount = Decimal(text) if NUMERIC_PATTERN.fullmatch(text) else None

    if amount is None or amount <= 0:
        return [f"Invalid price (must be > 0): {value}"]

    # Decimal places are counted on the text as written, so "1.100" is rejected.
    _, _, fraction = text.partition(".")
    if len(fraction) > PRICE_MAX_DECIMALS:
        return [f"Price has too many decimals (max {PRICE_MAX_DECIMALS}): {value}"]
    return []


def check_warranty_code(record: RawRecord) -> list[str]:
    value = record["warranty_code"]
    reasons: list[str] = []
    if not WARRANTY_CODE_PATTERN.fullmatch(value):
        reasons.append(f"Warranty code must be alphanumeric: {value}")
    if len(value) > WARRANTY_CODE_MAX_LENGTH:
        reasons.append(f"Warranty code too long (max {WARRANTY_CODE_MAX_LENGTH} chars): {value}")
    return reasons


def check_date_order(record: RawRecord) -> list[str]:
    purchase = date.fromisoformat(record["purchase_date"])
    warranty_purchase = date.fromisoformat(record["warranty_purchase_date"])
    warranty_start = date.fromisoformat(record["warranty_start_date"])
    warranty_end = date.fromisoformat(record["warranty_end_date"])

    reasons: list[str] = []
    if purchase > warranty_purchase:
        reasons.append(
            f"purchase_date ({record['purchase_date']}) must be <= "
            f"warranty_purchase_date ({record['warranty_purchase_date']})"
        )
    if warranty_purchase > warranty_start:
        reasons.append(
            f"warranty_purchase_date ({record['warranty_purchase_date']}) must be <= "
            f"warranty_start_date ({record['warranty_start_date']})"
        )
    if warranty_start >= warranty_end:
        reasons.append(
            f"warranty_start_date ({record['warranty_start_date']}) must be < "
            f"warranty_end_date ({record['warranty_end_date']})"
        )
    return reasons


PRESENCE_RULE: Rule = check_required_fields
FORMAT_RULES: tuple[Rule, ...] = (check_date_formats, check_email, check_price, check_warranty_code)
ORDERING_RULES: tuple[Rule, ...] = (check_date_order,)


def check_record(record: RawRecord) -> list[str]:
    reasons = PRESENCE_RULE(record)
    if reasons:
        return reasons

    for rule in FORMAT_RULES:
        reasons.extend(rule(record))
    if reasons:
        return reasons

    for rule in ORDERING_RULES:
        reasons.extend(rule(record))
    return reasons


def validate_records(records: Sequence[RawRecord]) -> tuple[list[SaleRecord], list[InvalidRecord]]:
    started = time.monotonic()
    valid: list[SaleRecord] = []
    invalid: list[InvalidRecord] = []

    for index, record in enumerate(records):
        reasons = check_record(record)
        if reasons:
            invalid.append(InvalidRecord(index, dict(record), tuple(reasons)))
            continue
        valid.append(SaleRecord.from_raw(record))

    logger.info(
        "data validation completed",
        extra={
            "valid_lines": len(valid),
            "error_lines": len(invalid),
            "duration_seconds": round(time.monotonic() - started, 2),
        },
    )
    return valid, invalid
