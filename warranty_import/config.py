from dataclasses import dataclass
import os

from dotenv import load_dotenv


load_dotenv()


@dataclass(frozen=True)
class Settings:
    app_name: str
    database_url: str
    log_level: str
    input_dir: str
    output_dir: str
    crm_instance_url: str
    crm_login_url: str
    crm_client_id: str
    crm_username: str
    crm_private_key_path: str
    crm_api_version: str
    http_timeout_seconds: float
    bulk_operation: str
    bulk_object: str
    poll_interval_seconds: float
    poll_timeout_seconds: float
    poll_read_retries: int
    retry_backoff_seconds: float
    schedule_hour_utc: int
    schedule_minute_utc: int


def get_settings() -> Settings:
    return Settings(
        app_name=os.getenv("APP_NAME", "warranty-import"),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./imports.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        input_dir=os.getenv("INPUT_DIR", "./data/inbox"),
        output_dir=os.getenv("OUTPUT_DIR", "./outputs"),
        crm_instance_url=os.getenv("CRM_INSTANCE_URL", "https://login.salesforce.com"),
        crm_login_url=os.getenv("CRM_LOGIN_URL", "https://login.salesforce.com"),
        crm_client_id=os.getenv("CRM_CLIENT_ID", ""),
        crm_username=os.getenv("CRM_USERNAME", ""),
        crm_private_key_path=os.getenv("CRM_PRIVATE_KEY_PATH", "./config/jwt/private.key"),
        crm_api_version=os.getenv("CRM_API_VERSION", "v59.0"),
        http_timeout_seconds=float(os.getenv("HTTP_TIMEOUT_SECONDS", "30")),
        bulk_operation=os.getenv("BULK_OPERATION", "insert"),
        bulk_object=os.getenv("BULK_OBJECT", "Opportunity"),
        poll_interval_seconds=float(os.getenv("POLL_INTERVAL_SECONDS", "5")),
        poll_timeout_seconds=float(os.getenv("POLL_TIMEOUT_SECONDS", "600")),
        poll_read_retries=int(os.getenv("POLL_READ_RETRIES", "2")),
        retry_backoff_seconds=float(os.getenv("RETRY_BACKOFF_SECONDS", "1")),
        schedule_hour_utc=int(os.getenv("SCHEDULE_HOUR_UTC", "2")),
        schedule_minute_utc=int(os.getenv("SCHEDULE_MINUTE_UTC", "0")),
    )
