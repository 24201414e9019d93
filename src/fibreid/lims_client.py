"""
Laboratory management server client.

High level
----------
Analysis records produced by fibreid are stored on the laboratory management
server as the `analysisData` document of an assessment item. The server
exposes a generic "update item" call; this module is the thin wrapper around
it.

Key behaviors
-------------
- PUTs `{"analysisData": record}` to `<base>/assessments/<id>/items/<item>`.
- Sends a bearer token when one is configured.
- Uses small retry/backoff for resilience.
- Any failure after the last attempt raises `LIMSClientError`; the caller
  decides whether to carry on with the next record.

Environment
-----------
FIBREID_API_URL   : Base URL of the server API (default "http://localhost:5000/api")
FIBREID_API_TOKEN : Optional bearer token
"""

from __future__ import annotations

from typing import Any, Dict, Optional
import json
import logging
import os
import time
from urllib.parse import quote as _urlencode

import requests

logger = logging.getLogger(__name__)


class LIMSClientError(RuntimeError):
    """Raised when the laboratory management server cannot be updated."""


# ------------------------------------------------------------------------------
# Module configuration
# ------------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:5000/api"
MAX_ATTEMPTS = 4


def api_base_url() -> str:
    return os.getenv("FIBREID_API_URL", DEFAULT_API_URL).rstrip("/")


def api_token() -> Optional[str]:
    token = os.getenv("FIBREID_API_TOKEN", "").strip()
    return token or None


# ------------------------------------------------------------------------------
# Small utilities
# ------------------------------------------------------------------------------


def _sleep_backoff(i: int) -> None:
    """
    Sleep using a small exponential backoff.
    Sequence ~ 0.25s, 0.5s, 1s, 2s.
    """
    time.sleep(0.25 * (2**i))


def _headers(token: Optional[str]) -> Dict[str, str]:
    headers = {"Content-Type": "application/json", "Accept": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def _put_json(url: str, payload: Dict[str, Any], *, token: Optional[str], timeout: float = 10.0) -> dict:
    """
    PUT JSON with simple retry/backoff.

    Client errors (4xx) are not retried: the server has understood the
    request and rejected it. Network problems, 5xx and undecodable bodies are
    retried; LIMSClientError is raised once all attempts fail.
    """
    last_exc: Exception | None = None
    for i in range(MAX_ATTEMPTS):
        try:
            resp = requests.put(url, json=payload, headers=_headers(token), timeout=timeout)
            if 400 <= resp.status_code < 500:
                raise LIMSClientError(f"PUT {url} rejected with HTTP {resp.status_code}: {resp.text}")
            resp.raise_for_status()
            return resp.json()
        except (requests.RequestException, json.JSONDecodeError, ValueError) as e:
            last_exc = e
            logger.warning("PUT %s failed (attempt %d/%d): %s", url, i + 1, MAX_ATTEMPTS, e)
            if i < MAX_ATTEMPTS - 1:
                _sleep_backoff(i)
    assert last_exc is not None
    raise LIMSClientError(f"Failed PUT {url}: {last_exc}") from last_exc


# ------------------------------------------------------------------------------
# Public API
# ------------------------------------------------------------------------------


def update_item_analysis(
    assessment_id: str,
    item_id: str,
    record: Dict[str, Any],
    *,
    base_url: Optional[str] = None,
    token: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Store an analysis record on an assessment item.

    Parameters
    ----------
    assessment_id : str
        Server id of the asbestos assessment job.
    item_id : str
        Server id of the item within the job.
    record : dict
        A SampleAnalysis.to_record() payload.
    base_url, token : str, optional
        Override FIBREID_API_URL / FIBREID_API_TOKEN.

    Returns
    -------
    dict
        The updated item as returned by the server.

    Raises
    ------
    LIMSClientError
        If the server rejects the update or cannot be reached.
    """
    if not assessment_id or not item_id:
        raise LIMSClientError("assessment_id and item_id must be non-empty")

    base = (base_url or api_base_url()).rstrip("/")
    url = (
        f"{base}/assessments/{_urlencode(str(assessment_id), safe='')}"
        f"/items/{_urlencode(str(item_id), safe='')}"
    )
    logger.info("Uploading analysis for item %s of assessment %s", item_id, assessment_id)
    return _put_json(url, {"analysisData": record}, token=token if token is not None else api_token())
