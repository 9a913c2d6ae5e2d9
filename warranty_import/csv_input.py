import csv
import io
import logging
from pathlib import Path

from warranty_import.errors import InputFileError
from warranty_import.schemas import FIELD_NAMES, RawRecord


logger = logging.getLogger(__name__)


def read_sales_file(input_path: Path) -> list[RawRecord]:
    if input_path.suffix.lower() != ".csv":
        raise InputFileError(f"invalid file extension, expected csv: {input_path.name}")

    try:
        text = input_path.read_bytes().decode("utf-8-sig")
    except FileNotFoundError as exc:
        raise InputFileError(f"input file not found: {input_path}") from exc
    except UnicodeDecodeError as exc:
        raise InputFileError(f"input file is not valid UTF-8: {input_path.name}") from exc
    except OSError as exc:
        raise InputFileError(f"unable to read input file {input_path}: {exc}") from exc

    logger.info("parsing sales file", extra={"file_name": input_path.name, "file_size": len(text)})
    return parse_sales_csv(text)


def parse_sales_csv(text: str) -> list[RawRecord]:
    """Rows keyed by field name; wrong-width rows are skipped, blank rows dropped."""
    reader = csv.reader(io.StringIO(text, newline=""))
    try:
        header = next(reader, None)
    except csv.Error as exc:
        raise InputFileError(f"input file is not valid CSV: {exc}") from exc

    if not header or all(not column.strip() for column in header):
        raise InputFileError("CSV file is empty or invalid")

    if tuple(header) != FIELD_NAMES:
        raise InputFileError(
            "invalid CSV headers. Expected: {expected}, Got: {got}".format(
                expected=", ".join(FIELD_NAMES),
                got=", ".join(header),
            )
        )

    records: list[RawRecord] = []
    # Physical line where the current row starts; quoted fields may span lines.
    line_number = reader.line_num + 1
    try:
        for row in reader:
            row_start, line_number = line_number, reader.line_num + 1
            if not any(value.strip() for value in row):
                continue
            if len(row) != len(FIELD_NAMES):
                logger.warning(
                    "skipping line with invalid column count",
                    extra={
                        "line_number": row_start,
                        "expected_columns": len(FIELD_NAMES),
                        "actual_columns": len(row),
                    },
                )
                continue
            records.append(dict(zip(FIELD_NAMES, row)))
    except csv.Error as exc:
        raise InputFileError(f"input file is not valid CSV near line {line_number}: {exc}") from exc

    logger.info("sales file parsed", extra={"total_lines": len(records)})
    return records
