"""Operator messages and access log, backed by logging."""

import logging

logger = logging.getLogger(__name__)
access_logger = logging.getLogger("delivery.access")


class Output:
    """Default output sink.

    `print` carries operator messages (startup, failures); `log` writes one
    access line per finished request.
    """

    def __init__(self, operator: logging.Logger = logger, access: logging.Logger = access_logger):
        self.operator = operator
        self.access = access

    def print(self, message: str) -> None:
        self.operator.info(message)

    def log(self, response, resource) -> None:
        record = response.log
        self.access.info(
            '%s - "%s %s" %s %.1fms %s',
            record.address or "-",
            record.method,
            record.url,
            record.status_code if record.status_code is not None else "-",
            record.duration_ms,
            response.served_with or "-",
        )
