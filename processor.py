import copy
import logging
import math
import re
from dataclasses import dataclass

import pandas as pd

from config import Config

# Setup logger
logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter('%(levelname)s:%(name)s:%(message)s')
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

DATE_PATTERN = re.compile(r'^\d{4}-(0[1-9]|1[0-2])-(0[1-9]|[12][0-9]|3[01])$')
# digits only after commas are removed: no exponent, underscore, nan or inf
AMOUNT_PATTERN = re.compile(r'^-?\d*\.?\d+$')

INVALID_DATE = "Invalid date format"


class InvalidAmountFields(Exception):
    """Invoice has both or neither amount field, or an unparseable amount."""


class DateRejected(Exception):
    """Invoice date is malformed or outside the batch period."""

    def __init__(self, reason=INVALID_DATE):
        super().__init__(reason)
        self.reason = reason


@dataclass(frozen=True)
class CompanyInfo:
    id: str
    taxpayer_type: int


def has_value(val):
    if val is None:
        return False
    return str(val).strip() != ''


def parse_amount(val):
    """'1,234.50' -> 1234.5. Raises ValueError when not a finite plain number."""
    if isinstance(val, (int, float)):
        num = float(val)
    else:
        cleaned = str(val).replace(',', '').strip()
        if not AMOUNT_PATTERN.match(cleaned):
            raise ValueError(f"not a number: {val!r}")
        num = float(cleaned)
    if not math.isfinite(num):
        raise ValueError(f"not a finite number: {val!r}")
    return num


def invoice_label(invoice):
    return str(invoice.get("INV_NO", "")).strip() or "<no INV_NO>"


def validate_structure(invoice):
    """Exactly one of TOTAL_AMT / AMOUNT_KHR, and every supplied amount numeric."""
    inv_no = invoice_label(invoice)
    total, khr = (has_value(invoice.get(f)) for f in Config.EXCLUSIVE_AMOUNT_FIELDS)
    if total and khr:
        raise InvalidAmountFields(
            f"Invoice {inv_no} has both TOTAL_AMT and AMOUNT_KHR - only one amount field should be provided"
        )
    if not total and not khr:
        raise InvalidAmountFields(
            f"Invoice {inv_no} is missing both TOTAL_AMT and AMOUNT_KHR - one amount field is required"
        )
    for key in Config.AMOUNT_FIELDS:
        val = invoice.get(key)
        if not has_value(val):
            continue
        try:
            parse_amount(val)
        except ValueError:
            raise InvalidAmountFields(f"Invoice {inv_no} has a non-numeric {key}: {val!r}")


def validate_date(invoice, batch_period=None):
    """
    Check INV_DATE format and that it falls in the batch period.

    Returns:
        The invoice's period as 'YYYY-MM'.

    Raises:
        DateRejected: malformed date, or a period other than batch_period.
    """
    inv_date = invoice.get("INV_DATE")
    if not isinstance(inv_date, str) or not DATE_PATTERN.match(inv_date):
        raise DateRejected()
    period = inv_date[:7]
    if batch_period is not None and period != batch_period:
        raise DateRejected()
    return period


class PeriodTracker:
    """Single year-month shared by a batch; set by the first valid date."""

    def __init__(self):
        self.period = None

    def check(self, invoice):
        period = validate_date(invoice, self.period)
        if self.period is None:
            self.period = period
            logger.info(f"Batch period established: {period}")
        return period


def batch_fields(invoices):
    """Union of invoice field names, in first-seen order."""
    fields = []
    seen = set()
    for invoice in invoices:
        for key in invoice:
            if key not in seen:
                seen.add(key)
                fields.append(key)
    return fields


def build_request_body(skeleton, invoice, fields, company=None):
    """
    Derive the outgoing body for one invoice.
    The skeleton and the invoice are left untouched.
    """
    body = copy.deepcopy(skeleton)
    values = dict(invoice)
    if company is not None:
        body["TAXPAYER_TYPE"] = company.taxpayer_type
        values["ITEM_ID"] = company.id

    for key in fields:
        val = values.get(key)
        if not has_value(val):
            continue
        if key in Config.AMOUNT_FIELDS:
            body[key] = parse_amount(val)
        else:
            body[key] = str(val).strip()

    total_field, khr_field = Config.EXCLUSIVE_AMOUNT_FIELDS
    if has_value(invoice.get(total_field)):
        body.pop(khr_field, None)
    elif has_value(invoice.get(khr_field)):
        body.pop(total_field, None)
    return body


# =============================================================================
# Batch file loading (CSV / Excel)
# =============================================================================
def load_csv(path):
    # Support for Excel files
    if path.lower().endswith(('.xls', '.xlsx')):
        return pd.read_excel(path, dtype=str)

    try:
        # Load all columns as string by default to preserve leading zeros
        return pd.read_csv(path, encoding='utf-8-sig', dtype=str)
    except UnicodeDecodeError:
        return pd.read_csv(path, encoding='tis-620', dtype=str)


def clean_scientific_notation(val):
    """Converts scientific notation strings (e.g. '6.81181E+11') to full integer strings."""
    s_val = str(val).strip()
    try:
        if 'E' in s_val.upper() and '-' not in s_val:
            return str(int(float(s_val)))
        # Check for float ending with .0
        if s_val.endswith('.0'):
            return s_val[:-2]
        return s_val
    except ValueError:
        return s_val


def format_invoice_date(val):
    """Drops a time component, e.g. '2024-01-05 00:00:00' -> '2024-01-05'."""
    s_val = str(val).strip()
    if ' ' in s_val:
        s_val = s_val.split(' ')[0]
    if 'T' in s_val:
        s_val = s_val.split('T')[0]
    return s_val


def load_invoice_file(path):
    """
    Read a CSV/Excel batch file into invoice rows.

    Returns:
        List of {field: str} dicts, blank cells omitted.
    """
    df = load_csv(path)
    df.columns = df.columns.str.strip()
    df = df.dropna(how='all')

    for col in ("INV_NO", "ITEM_ID"):
        if col in df.columns:
            df[col] = df[col].apply(lambda v: v if pd.isna(v) else clean_scientific_notation(v))
    if "INV_DATE" in df.columns:
        df["INV_DATE"] = df["INV_DATE"].apply(lambda v: v if pd.isna(v) else format_invoice_date(v))

    invoices = []
    for record in df.to_dict(orient='records'):
        row = {}
        for key, val in record.items():
            if pd.isna(val) or str(val).strip() == '':
                continue
            row[str(key)] = str(val).strip()
        invoices.append(row)

    logger.info(f"Loaded {len(invoices)} invoice rows from {path}")
    return invoices
