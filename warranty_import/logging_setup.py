from collections.abc import Iterator
from contextlib import contextmanager
import contextvars
import logging


_import_id_ctx: contextvars.ContextVar[str] = contextvars.ContextVar("import_id", default="-")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s import_id=%(import_id)s %(message)s"


def get_import_id() -> str:
    return _import_id_ctx.get()


@contextmanager
def import_context(import_id: str) -> Iterator[str]:
    token = _import_id_ctx.set(import_id)
    try:
        yield import_id
    finally:
        _import_id_ctx.reset(token)


class ImportIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.import_id = _import_id_ctx.get()
        return True


def configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    root_logger = logging.getLogger()

    if not root_logger.handlers:
        logging.basicConfig(level=level)

    root_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, defaults={"import_id": "-"})
    for handler in root_logger.handlers:
        handler.setFormatter(formatter)
        if not any(isinstance(existing, ImportIdFilter) for existing in handler.filters):
            handler.addFilter(ImportIdFilter())
