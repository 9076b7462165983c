from __future__ import annotations

from typing import Any, Dict, Optional

import httpx
import typer

from cli.config import CLIConfig


class OversizedReport(Exception):
    """The service refused to email a report without size confirmation."""


class ApiClient:
    """Minimal HTTP client for the dashboard service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.timeout)

    def close(self) -> None:
        self._client.close()

    def get_live(self) -> Dict[str, Any]:
        return self._request("GET", "/live").json()

    def get_window(self) -> Dict[str, Any]:
        return self._request("GET", "/window").json()

    def start_window(
        self,
        mode: str,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"mode": mode}
        if start is not None:
            payload["start"] = start
        if end is not None:
            payload["end"] = end
        return self._request("POST", "/window/start", json=payload).json()

    def stop_window(self) -> Dict[str, Any]:
        return self._request("POST", "/window/stop").json()

    def reset_window(self) -> Dict[str, Any]:
        return self._request("POST", "/window/reset").json()

    def get_report(self, interval_seconds: Optional[int] = None) -> Dict[str, Any]:
        return self._request("GET", "/report", params=_interval_params(interval_seconds)).json()

    def download_report(self, interval_seconds: Optional[int] = None) -> tuple[str, str]:
        response = self._request(
            "GET", "/report.csv", params=_interval_params(interval_seconds)
        )
        return response.headers.get("x-report-id", ""), response.text

    def email_report(
        self,
        email: str,
        interval_seconds: Optional[int] = None,
        confirm_large: bool = False,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"email": email, "confirm_large": confirm_large}
        if interval_seconds is not None:
            payload["interval_seconds"] = interval_seconds
        try:
            response = self._client.post("/report/email", json=payload)
            if response.status_code == 413:
                raise OversizedReport(_detail(response))
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.TransportError as exc:
            self._handle_transport_error(exc)
        return response.json()

    def cleanup(self, retention_days: int) -> Dict[str, Any]:
        return self._request(
            "POST", "/admin/cleanup", json={"retention_days": retention_days}
        ).json()

    def get_stats(self) -> Dict[str, Any]:
        return self._request("GET", "/admin/stats").json()

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        try:
            response = self._client.request(method, path, params=params, json=json)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.TransportError as exc:
            self._handle_transport_error(exc)
        return response

    def _handle_transport_error(self, exc: httpx.TransportError) -> None:
        typer.secho(
            f"Could not reach {self._config.base_url}: {exc}",
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(code=1)

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        message = (
            f"Request failed with status {exc.response.status_code}: {_detail(exc.response)}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


def _interval_params(interval_seconds: Optional[int]) -> Dict[str, Any]:
    return {"interval_seconds": interval_seconds} if interval_seconds is not None else {}


def _detail(response: httpx.Response) -> str:
    detail: Any = None
    try:
        data = response.json()
        detail = data.get("detail") if isinstance(data, dict) else None
    except ValueError:
        detail = response.text.strip()
    return str(detail) if detail else "no detail provided."
