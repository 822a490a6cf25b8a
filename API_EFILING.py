"""
API_EFILING.py - GDT e-Filing Portal Integration Module
Handles: Company Identity Lookup, Invoice Submission, and Sequential Batch Orchestration.
"""
import requests
import time
import logging
import json

from config import Config
from capture_parser import extract_template
from processor import (
    CompanyInfo,
    DateRejected,
    PeriodTracker,
    batch_fields,
    build_request_body,
    invoice_label,
    validate_structure,
)
from report import BatchReport

logger = logging.getLogger(__name__)

COMPANY_LOOKUP_FAILED = "Unable to fetch company info"
SUBMIT_FAILED = "Failed to process invoice"


class BatchTimeoutError(Exception):
    """Batch exceeded its wall-clock budget. Carries the partial report."""

    def __init__(self, report: BatchReport):
        super().__init__(f"Batch timed out after {report.processed} of {report.total} invoices")
        self.report = report


def classify_taxpayer(identifier: str) -> int:
    """TINs containing a hyphen are registered taxpayers (1), others non-taxpayers (2)."""
    return 1 if "-" in identifier else 2


class EFilingService:
    """Main service class for GDT e-Filing batch submission."""

    def __init__(self):
        self.config = Config

    # =========================================================================
    # 1. IDENTITY RESOLVER - TIN -> portal company ID
    # =========================================================================
    def resolve_company(self, identifier: str, headers: dict):
        """
        Look up the portal's internal company ID for a TIN.

        Returns:
            CompanyInfo, or None when the lookup fails for any reason.
        """
        taxpayer_type = classify_taxpayer(identifier)
        if taxpayer_type == 1:
            url = f"{self.config.PORTAL_BASE_URL.rstrip('/')}{self.config.COMPANY_INFO_PATH}"
            payload = {"TIN": identifier, "TYPE": taxpayer_type}
        else:
            url = f"{self.config.PORTAL_BASE_URL.rstrip('/')}{self.config.NONTAXPAYER_PATH}"
            payload = {"TIN": identifier}

        try:
            response = requests.post(
                url,
                json=payload,
                headers=headers,
                timeout=self.config.REQUEST_TIMEOUT
            )
            response.raise_for_status()
            company_id = response.json()["DATA"]["ID"]
            if company_id is None or str(company_id).strip() == "":
                raise ValueError("empty DATA.ID")
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to fetch company info for TIN: {identifier}. Error: {e}")
            return None
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Malformed company info response for TIN: {identifier}. Error: {e}")
            return None

        logger.info(f"Company info fetched successfully for TIN: {identifier}")
        return CompanyInfo(id=str(company_id), taxpayer_type=taxpayer_type)

    # =========================================================================
    # 2. SUBMIT SERVICE - POST one invoice body
    # =========================================================================
    def submit_invoice(self, template, body: dict):
        """
        POST one request body to the captured target URL.

        Returns:
            Decoded JSON payload, or the raw response text when not JSON.

        Raises:
            requests.exceptions.RequestException on transport or HTTP error.
        """
        response = requests.post(
            template.target_url,
            json=body,
            headers=template.headers,
            timeout=self.config.REQUEST_TIMEOUT
        )
        if not response.ok:
            logger.error(f"Portal returned {response.status_code}: {response.text[:200]}")
        response.raise_for_status()
        try:
            return response.json()
        except ValueError:
            return response.text

    # =========================================================================
    # 3. ORCHESTRATOR - Sequential batch submission
    # =========================================================================
    def plan_batch(self, invoices: list) -> list:
        """
        Apply the date/period rule in input order and validate the structure
        of every invoice that would be submitted. No network calls.

        Returns:
            List of (invoice, rejection reason or None).

        Raises:
            InvalidAmountFields for the first structurally broken invoice.
        """
        tracker = PeriodTracker()
        plan = []
        for invoice in invoices:
            try:
                tracker.check(invoice)
            except DateRejected as e:
                plan.append((invoice, e.reason))
                continue
            validate_structure(invoice)
            plan.append((invoice, None))
        return plan

    def submit_batch(self, invoices: list, template, deadline: float = None) -> BatchReport:
        """
        Submit invoices one at a time, in input order.

        Args:
            invoices: Invoice rows ({field: str}).
            template: RequestTemplate from capture_parser.extract_template.
            deadline: Optional time.monotonic() value; once passed, the batch
                stops and BatchTimeoutError carries the partial report.

        Returns:
            BatchReport with every invoice in exactly one of successes/failures.
        """
        plan = self.plan_batch(invoices)
        fields = batch_fields(invoices)
        report = BatchReport(total=len(invoices))
        company_cache = {} if self.config.CACHE_COMPANY_LOOKUPS else None

        logger.info("=== Starting Data Processing ===")
        logger.info(f"Total invoices to process: {len(invoices)}")

        for index, (invoice, rejection) in enumerate(plan, start=1):
            if deadline is not None and time.monotonic() > deadline:
                report.finish()
                logger.error(f"Batch deadline exceeded at invoice {index} of {len(plan)}")
                raise BatchTimeoutError(report)

            inv_no = invoice_label(invoice)
            logger.info(f"Processing invoice {index} of {len(plan)}: {inv_no}")

            if rejection:
                logger.info(f"[{inv_no}] Skipping: {rejection}")
                report.record_failure(inv_no, rejection)
                continue

            company = None
            item_id = str(invoice.get("ITEM_ID") or "").strip()
            if item_id:
                company = self._lookup_company(item_id, template.headers, company_cache)
                if company is None:
                    logger.info(f"[{inv_no}] Skipping: {COMPANY_LOOKUP_FAILED}")
                    report.record_failure(inv_no, COMPANY_LOOKUP_FAILED)
                    continue
                logger.info(f"[{inv_no}] ITEM_ID: {company.id}, TAXPAYER_TYPE: {company.taxpayer_type}")

            body = build_request_body(template.body_skeleton, invoice, fields, company)
            try:
                payload = self.submit_invoice(template, body)
            except requests.exceptions.RequestException as e:
                logger.error(f"[{inv_no}] {SUBMIT_FAILED}: {e}")
                report.record_failure(inv_no, SUBMIT_FAILED)
                continue

            logger.info(f"[{inv_no}] Processed successfully: {json.dumps(payload, ensure_ascii=False)[:200]}")
            report.record_success(inv_no, payload)

        report.finish()
        report.log_summary()
        return report

    def process_data(self, captured_text: str, invoices: list, deadline: float = None) -> BatchReport:
        """Full pipeline: extract template from capture -> submit batch."""
        template = extract_template(captured_text, batch_fields(invoices))
        return self.submit_batch(invoices, template, deadline=deadline)

    def _lookup_company(self, item_id, headers, cache):
        if cache is None:
            return self.resolve_company(item_id, headers)
        if item_id in cache:
            return cache[item_id]
        company = self.resolve_company(item_id, headers)
        # failed lookups are retried by later invoices
        if company is not None:
            cache[item_id] = company
        return company


# --- Convenience functions for direct usage ---

def process_data(captured_text: str, invoices: list) -> dict:
    """Extract template and submit the batch; returns the report as a dict."""
    service = EFilingService()
    return service.process_data(captured_text, invoices).to_dict()


def resolve_company(identifier: str, headers: dict):
    """Look up portal company info for a TIN."""
    service = EFilingService()
    return service.resolve_company(identifier, headers)
