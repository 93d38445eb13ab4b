from __future__ import annotations

"""
Outbound JSON webhooks to the automation platform (AI recommendations and
workflow notifications).
"""

import json
import logging
import urllib.error
from dataclasses import dataclass
from typing import Any
from urllib.request import Request, urlopen

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebhookResponse:
    status_code: int
    payload: Any
    error: str = ""

    @property
    def ok(self) -> bool:
        return not self.error and 200 <= self.status_code < 300


def parse_json_body(raw_body: bytes) -> Any:
    if not raw_body:
        return {}
    try:
        return json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return {"raw": raw_body.decode("utf-8", errors="replace")}


def post_json(
    url: str,
    payload: dict[str, Any],
    timeout: float = 10,
    correlation_id: str = "",
) -> WebhookResponse:
    """POSTs a JSON body; transport and HTTP errors come back in the response."""
    request_body = json.dumps(
        payload,
        ensure_ascii=False,
        separators=(",", ":"),
        default=str,
    ).encode("utf-8")
    request = Request(url, data=request_body, method="POST")
    request.add_header("Content-Type", "application/json")
    request.add_header("Accept", "application/json")
    if correlation_id:
        request.add_header("X-Correlation-Id", correlation_id)
    try:
        with urlopen(request, timeout=timeout) as response:
            response_payload = parse_json_body(response.read())
            status_code = int(getattr(response, "status", 200))
    except urllib.error.HTTPError as exc:
        try:
            response_body = exc.read()
        except OSError:
            response_body = b""
        logger.warning("Webhook HTTP error: url=%s status=%s", url, exc.code)
        return WebhookResponse(
            status_code=int(getattr(exc, "code", 500)),
            payload=parse_json_body(response_body),
            error="webhook_http_error",
        )
    except (urllib.error.URLError, TimeoutError) as exc:
        logger.warning("Webhook unreachable: url=%s error=%s", url, exc)
        return WebhookResponse(status_code=0, payload={}, error=str(exc))
    if status_code >= 400:
        return WebhookResponse(
            status_code=status_code,
            payload=response_payload,
            error="webhook_http_error",
        )
    return WebhookResponse(status_code=status_code, payload=response_payload)
