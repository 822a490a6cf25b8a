"""
capture_parser.py - Request Template Extraction
Turns a browser "Copy as fetch" capture into a reusable RequestTemplate.
"""
import json
import logging
import re
from dataclasses import dataclass

from config import Config

logger = logging.getLogger(__name__)

URL_PATTERN = re.compile(r'fetch\(\s*"([^"]+)"')
HEADERS_PATTERN = re.compile(r'"headers"\s*:\s*(\{.*?\})\s*,', re.DOTALL)
BODY_PATTERN = re.compile(r'"body"\s*:\s*"(\{(?:[^"\\]|\\.)*\})"', re.DOTALL)
REFERRER_PATTERN = re.compile(r'"referrer"\s*:\s*"([^"]+)"')


class ExtractionError(Exception):
    """Raised when a capture section (URL, HEADERS or BODY) cannot be read."""

    def __init__(self, missing, detail=None):
        message = f"Could not extract {missing} from fetch request"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.missing = missing


@dataclass(frozen=True)
class RequestTemplate:
    target_url: str
    headers: dict
    auth_token: str
    session_cookie: str
    body_skeleton: dict


def extract_url(text: str) -> str:
    match = URL_PATTERN.search(text)
    if not match:
        raise ExtractionError("URL")
    return match.group(1)


def extract_headers(text: str) -> dict:
    match = HEADERS_PATTERN.search(text)
    if not match:
        raise ExtractionError("HEADERS")
    try:
        headers = json.loads(match.group(1).replace("\n", ""))
    except ValueError as e:
        raise ExtractionError("HEADERS", str(e)) from e
    if not isinstance(headers, dict):
        raise ExtractionError("HEADERS", "headers block is not an object")
    return {str(k): str(v) for k, v in headers.items()}


def extract_body(text: str) -> dict:
    """
    Decode the escaped JSON document held in the "body" string literal.
    The literal is first read as a JSON string, then parsed as an object.
    """
    match = BODY_PATTERN.search(text)
    if not match:
        raise ExtractionError("BODY")
    try:
        raw_body = json.loads(f'"{match.group(1)}"')
        body = json.loads(raw_body)
    except ValueError as e:
        raise ExtractionError("BODY", str(e)) from e
    if not isinstance(body, dict):
        raise ExtractionError("BODY", "body is not a JSON object")
    return body


def extract_referrer(text: str, captured_headers=None) -> str:
    """fetch "referrer" option, then a captured referer header, then the configured default."""
    match = REFERRER_PATTERN.search(text)
    if match:
        return match.group(1)
    referer = _header_value(captured_headers or {}, "referer")
    if referer != Config.NOT_FOUND:
        return referer
    return Config.PORTAL_REFERRER


def _header_value(headers: dict, name: str) -> str:
    for key, value in headers.items():
        if key.lower() == name and value:
            return value
    return Config.NOT_FOUND


def extract_template(captured_text: str, fields_to_strip=()) -> RequestTemplate:
    """
    Build the RequestTemplate shared by every invoice of a batch.

    Args:
        captured_text: Text copied from browser devtools ("Copy as fetch").
        fields_to_strip: Per-invoice field names removed from the body skeleton.

    Returns:
        RequestTemplate with submission headers and body skeleton.

    Raises:
        ExtractionError: when the URL, headers or body section is missing.
    """
    logger.info("Extracting request template from capture...")
    target_url = extract_url(captured_text)
    captured_headers = extract_headers(captured_text)
    body = extract_body(captured_text)

    auth_token = _header_value(captured_headers, "x-xsrf-token")
    session_cookie = _header_value(captured_headers, "cookie")
    if auth_token == Config.NOT_FOUND:
        logger.warning("x-xsrf-token not found in capture; portal will likely reject requests")
    if session_cookie == Config.NOT_FOUND:
        logger.warning("cookie not found in capture; portal will likely reject requests")

    strip = set(fields_to_strip)
    skeleton = {k: v for k, v in body.items() if k not in strip}

    headers = dict(Config.PORTAL_HEADERS)
    headers["x-xsrf-token"] = auth_token
    headers["cookie"] = session_cookie
    headers["Referer"] = extract_referrer(captured_text, captured_headers)

    logger.info(f"Template extracted: url={target_url}, skeleton keys={sorted(skeleton)}")
    return RequestTemplate(
        target_url=target_url,
        headers=headers,
        auth_token=auth_token,
        session_cookie=session_cookie,
        body_skeleton=skeleton,
    )
