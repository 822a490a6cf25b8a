"""
report.py - Batch Result Aggregation
Collects per-invoice outcomes and builds the end-of-batch summary.
"""
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InvoiceOutcome:
    invoice_no: str
    message: Any

    def to_dict(self) -> dict:
        return {"invoice_no": self.invoice_no, "message": self.message}


class BatchReport:
    """Outcomes of one batch run. Owned by a single submit_batch call."""

    def __init__(self, total: int = 0):
        self.total = total
        self.successes = []
        self.failures = []
        self.started_at = time.monotonic()
        self.started_wall = datetime.now()
        self.elapsed_seconds = 0.0
        self.summary_text = ""

    def record_success(self, invoice_no, payload) -> None:
        self.successes.append(InvoiceOutcome(str(invoice_no), payload))

    def record_failure(self, invoice_no, reason: str) -> None:
        self.failures.append(InvoiceOutcome(str(invoice_no), reason))

    @property
    def processed(self) -> int:
        return len(self.successes) + len(self.failures)

    @property
    def success_rate(self) -> float:
        """Percentage of processed invoices that succeeded (0 for an empty batch)."""
        if self.processed == 0:
            return 0.0
        return len(self.successes) / self.processed * 100

    def finish(self) -> "BatchReport":
        self.elapsed_seconds = max(0.0, time.monotonic() - self.started_at)
        self.summary_text = (
            f"Processed {self.processed} invoices: "
            f"{len(self.successes)} succeeded, {len(self.failures)} failed "
            f"in {self.elapsed_seconds:.2f}s "
            f"(success rate {self.success_rate:.2f}%)"
        )
        return self

    def log_summary(self) -> None:
        logger.info("=== Processing Summary ===")
        logger.info(f"Successfully Processed: {len(self.successes)}")
        logger.info(f"Failed Invoices: {len(self.failures)}")
        logger.info(f"Total Processing Time: {self.elapsed_seconds:.2f} seconds")
        logger.info(f"Success Rate: {self.success_rate:.2f}%")
        if self.failures:
            logger.info("Failed Invoice Numbers:")
            for idx, outcome in enumerate(self.failures, start=1):
                logger.info(f"{idx}. {outcome.invoice_no} ({outcome.message})")
        logger.info(f"Started at: {self.started_wall:%Y-%m-%d %H:%M:%S}")

    def to_dict(self) -> dict:
        return {
            "success": [o.to_dict() for o in self.successes],
            "failed": [o.to_dict() for o in self.failures],
            "message": self.summary_text,
            "total": self.total,
            "success_count": len(self.successes),
            "failed_count": len(self.failures),
            "elapsed_seconds": round(self.elapsed_seconds, 2),
            "success_rate": round(self.success_rate, 2),
        }
