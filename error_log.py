import logging
import traceback
from datetime import datetime, timezone
from typing import Any

from models import ErrorLogRecord
from store import BeaconStore

logger = logging.getLogger(__name__)


class ErrorLogger:
    """Registra falhas inesperadas na tabela error_logs; :meth:`log` nunca levanta exceção."""

    def __init__(self, store: BeaconStore):
        self.store = store

    async def log(self, function_name: str, error: BaseException, payload: Any = None) -> None:
        stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        record = ErrorLogRecord(
            function_name=function_name,
            error_message=str(error) or type(error).__name__,
            error_stack=stack or "No stack trace available",
            payload=payload,
            timestamp=datetime.now(timezone.utc),
        )
        try:
            await self.store.append_error_log(record)
        except Exception:
            logger.exception("Failed to write error log for %s", function_name)
