"""
Event Reporter

Informational logs and structured success/failure events for the refresh
cycle. Reporting never affects control flow.
"""

import json
import logging
from typing import Dict, Optional, Protocol

EVENT_LOGGER_NAME = "app.events"


class EventReporter(Protocol):
    def log_info(self, message: str) -> None: ...

    def log_warning(
        self, message: str, error: Optional[BaseException] = None
    ) -> None: ...

    def log_event(self, name: str, properties: Dict[str, str]) -> None: ...


class LoggingEventReporter:
    """EventReporter backed by the standard logging module."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(EVENT_LOGGER_NAME)

    def log_info(self, message: str) -> None:
        self.logger.info(message)

    def log_warning(
        self, message: str, error: Optional[BaseException] = None
    ) -> None:
        if error is not None:
            self.logger.warning(
                message, exc_info=(type(error), error, error.__traceback__)
            )
        else:
            self.logger.warning(message)

    def log_event(self, name: str, properties: Dict[str, str]) -> None:
        # Properties travel in `extra` too so structured handlers can pick them up
        self.logger.info(
            f"Event {name} {json.dumps(properties, sort_keys=True)}",
            extra={"event_name": name, "event_properties": dict(properties)},
        )
