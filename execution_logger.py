# execution_logger.py

import csv
import io
import logging
import os
from logging.handlers import RotatingFileHandler

from data_models import ExecutionResult

CSV_COLUMNS = [
    "timestamp_utc", "rule_id", "opportunity_id", "template_id", "success",
    "transaction_ref", "gas_used", "cost", "duration_ms", "error",
]


class ExecutionLogger:
    """
    A dedicated logger that records every completed execution as a row of a CSV file.
    """
    def __init__(self, filename: str = "executions.csv"):
        self.filename = filename
        self.logger = self._setup_logger()
        # Write the header if the file is new/empty
        self._write_header()

    def _setup_logger(self) -> logging.Logger:
        """
        Creates a logger that writes raw CSV lines to the file. One logger per file
        path, so separate engines (and tests) never share a handler.
        """
        execution_logger = logging.getLogger(f"execution_logger.{os.path.abspath(self.filename)}")
        execution_logger.setLevel(logging.INFO)

        # Prevent rows from propagating to the root logger
        execution_logger.propagate = False

        if not execution_logger.handlers:
            handler = RotatingFileHandler(self.filename, maxBytes=5*1024*1024, backupCount=2)
            handler.setFormatter(logging.Formatter('%(message)s'))
            execution_logger.addHandler(handler)

        return execution_logger

    def _write_header(self):
        """Writes the CSV header if the file is empty or missing."""
        if not os.path.exists(self.filename) or os.path.getsize(self.filename) == 0:
            self.logger.info(",".join(CSV_COLUMNS))

    @staticmethod
    def _format_row(values) -> str:
        buffer = io.StringIO()
        csv.writer(buffer, lineterminator="").writerow(values)
        return buffer.getvalue()

    def log_execution(self, result: ExecutionResult):
        """Formats an ExecutionResult into a CSV row and logs it."""
        if not isinstance(result, ExecutionResult):
            logging.getLogger(__name__).error("log_execution received an object that was not an ExecutionResult.")
            return

        self.logger.info(self._format_row([
            result.timestamp.isoformat(),
            result.rule_id or "",
            result.opportunity_id or "",
            result.template_id or "",
            "SUCCESS" if result.success else "FAILED",
            result.transaction_ref or "",
            "" if result.gas_used is None else result.gas_used,
            result.cost or "",
            f"{result.duration_ms:.1f}",
            result.error or "",
        ]))

    def close(self):
        for handler in list(self.logger.handlers):
            handler.flush()
            handler.close()
            self.logger.removeHandler(handler)
