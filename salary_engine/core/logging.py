import logging
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Union

from pythonjsonlogger import jsonlogger

# Request id of the HTTP request being served, empty outside a request
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "urllib3")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    def __init__(self, *args: Any, service: str = "", **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.service = service

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)

        req_id = request_id_var.get()
        if req_id:
            log_record["request_id"] = req_id
        if self.service:
            log_record["service"] = self.service

        if not log_record.get("timestamp"):
            log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname


def setup_logging(level: Union[int, str] = logging.INFO, service: str = "") -> None:
    logger = logging.getLogger()
    # TestClient and reloaders may import main more than once
    if any(isinstance(h.formatter, CustomJsonFormatter) for h in logger.handlers):
        return
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    log_handler = logging.StreamHandler()
    log_handler.setFormatter(CustomJsonFormatter("%(timestamp) %(level) %(name) %(message)", service=service))
    logger.addHandler(log_handler)
    logger.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
