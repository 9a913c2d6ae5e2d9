from collections.abc import Sequence
import csv
import io
import logging

from warranty_import.schemas import EnrichedSale


logger = logging.getLogger(__name__)

OPPORTUNITY_HEADERS: tuple[str, ...] = (
    "AccountId",
    "Name",
    "StageName",
    "Type",
    "CloseDate",
    "Amount",
    "Customer_Email__c",
    "Product_Name__c",
    "Warranty_Code__c",
    "Warranty_Start_Date__c",
    "Warranty_End_Date__c",
    "Product_Purchase_Price__c",
    "Invoice_Number__c",
    "Purchase_Date__c",
    "Shipping_Address__c",
)

STAGE_NAME = "Closed Won"
OPPORTUNITY_TYPE = "Warranty Extension"


def to_opportunity_row(item: EnrichedSale) -> tuple[str, ...]:
    sale = item.sale
    return (
        item.account_id,
        f"{sale.warranty_label} - {sale.customer_email} - {sale.invoice_number}",
        STAGE_NAME,
        OPPORTUNITY_TYPE,
        sale.warranty_purchase_date,
        sale.product_purchase_price,
        sale.customer_email,
        sale.product_name,
        sale.warranty_code,
        sale.warranty_start_date,
        sale.warranty_end_date,
        sale.product_purchase_price,
        sale.invoice_number,
        sale.purchase_date,
        (
            f"{sale.customer_address_street}, {sale.customer_address_zipcode} "
            f"{sale.customer_address_city}, {sale.customer_address_country}"
        ),
    )


def transform_records(enriched: Sequence[EnrichedSale]) -> bytes:
    buffer = io.StringIO(newline="")
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(OPPORTUNITY_HEADERS)
    writer.writerows(to_opportunity_row(item) for item in enriched)

    # The bulk endpoint is created with lineEnding=LF, including inside quoted values.
    payload = buffer.getvalue().replace("\r\n", "\n").encode("utf-8")

    logger.info(
        "data transformation completed",
        extra={"record_count": len(enriched), "csv_size_bytes": len(payload)},
    )
    return payload
