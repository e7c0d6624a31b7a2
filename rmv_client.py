# Client for the RMV HAFAS departureBoard endpoint.

import logging
from typing import Any, Dict, Optional

import requests

log = logging.getLogger("rmv_proxy.client")

RMV_DEPARTURE_BOARD_URL = "https://www.rmv.de/hapi/departureBoard"


class UpstreamError(Exception):
    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status


class RmvClient:
    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = RMV_DEPARTURE_BOARD_URL,
        duration_min: int = 60,
        connect_timeout_sec: float = 3.0,
        read_timeout_sec: float = 7.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url
        self.duration_min = duration_min
        self.timeout = (connect_timeout_sec, read_timeout_sec)
        self.session = session or requests.Session()

    def build_params(self, stop_id: str) -> Dict[str, str]:
        return {
            "accessId": self.api_key,
            "id": stop_id,
            "format": "json",
            "duration": str(self.duration_min),
        }

    def fetch(self, stop_id: str) -> Any:
        """Fetch the raw departure board for stop_id.

        The decoded JSON is returned as-is. Any failure is raised as
        UpstreamError; nothing is retried here.
        """
        log.debug("GET %s stop=%s", self.base_url, stop_id)
        try:
            resp = self.session.get(
                self.base_url,
                params=self.build_params(stop_id),
                timeout=self.timeout,
                headers={"Accept": "application/json"},
            )
        except requests.Timeout as exc:
            raise UpstreamError(504, "RMV request timed out") from exc
        except requests.RequestException as exc:
            raise UpstreamError(504, "RMV request failed") from exc

        with resp:
            if resp.status_code != 200:
                raise UpstreamError(
                    resp.status_code, f"RMV returned status {resp.status_code}"
                )
            try:
                return resp.json()
            except ValueError as exc:
                raise UpstreamError(502, "RMV invalid JSON") from exc
