"""Hands finished reports to the external report email endpoint."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import httpx

from models.errors import EmailDeliveryFailed
from services.report import Report

LOGGER = logging.getLogger(__name__)

_GUIDANCE = "Try a shorter time range or a coarser sampling interval."


def build_payload(email: str, report: Report) -> Dict[str, Any]:
    return {
        "email": email,
        "report_csv": report.to_csv(),
        "summary_text": report.summary_text(),
        "time_range_label": report.time_range_label,
    }


def payload_size(payload: Dict[str, Any]) -> int:
    return len(json.dumps(payload).encode("utf-8"))


class ReportEmailClient:
    """Posts ``{email, report_csv, summary_text, time_range_label}`` to the endpoint."""

    def __init__(
        self,
        endpoint: Optional[str],
        warn_bytes: int,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        self.endpoint = endpoint
        self.warn_bytes = warn_bytes
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def send(self, email: str, report: Report, confirm_large: bool = False) -> int:
        """Deliver ``report``; returns the payload size in bytes.

        Raises ``EmailDeliveryFailed`` when no endpoint is configured, when
        the payload exceeds ``warn_bytes`` without ``confirm_large``, or when
        the endpoint times out or rejects the request.
        """
        if not self.endpoint:
            raise EmailDeliveryFailed("Report email endpoint is not configured.")

        payload = build_payload(email, report)
        size = payload_size(payload)
        if size > self.warn_bytes and not confirm_large:
            raise EmailDeliveryFailed(
                f"Report is {size / (1024 * 1024):.1f} MB and may fail to send over "
                f"mobile networks. Confirm to send anyway. {_GUIDANCE}",
                oversized=True,
            )

        try:
            response = await self._client.post(self.endpoint, json=payload)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise EmailDeliveryFailed(f"Sending the report timed out. {_GUIDANCE}") from exc
        except httpx.HTTPStatusError as exc:
            detail = _error_detail(exc.response)
            raise EmailDeliveryFailed(
                f"Email endpoint returned {exc.response.status_code}: {detail}. {_GUIDANCE}"
            ) from exc
        except httpx.HTTPError as exc:
            raise EmailDeliveryFailed(f"Could not reach the email endpoint: {exc}") from exc

        body = _json_or_empty(response)
        if body.get("success") is False:
            raise EmailDeliveryFailed(
                f"Email endpoint reported a failure: {body.get('error') or 'unknown error'}."
            )

        LOGGER.info(
            "Report emailed",
            extra={"report_id": report.report_id, "status": response.status_code},
        )
        return size

    async def aclose(self) -> None:
        await self._client.aclose()


def _json_or_empty(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _error_detail(response: httpx.Response) -> str:
    data = _json_or_empty(response)
    detail = data.get("error") or data.get("detail")
    if detail:
        return str(detail)
    return response.text.strip() or "no detail provided"
