"""
Client for the HearthHub API's server scale endpoint.

The game server is scaled to 0 replicas before files on the shared volume
are touched and back to 1 afterwards.
"""

from __future__ import annotations

import logging

import httpx

from errors import ScaleError

_log = logging.getLogger(__name__)

# 400 responses that mean the deployment is already where we want it
_ALREADY_IN_STATE = {
    0: "no server to terminate",
    1: "server already running",
}


class HearthHubClient:
    def __init__(self, base_url: str, client: httpx.Client | None = None, timeout: float = 30):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout)

    def scale_deployment(self, discord_id: str, refresh_token: str, replicas: int) -> None:
        if replicas not in _ALREADY_IN_STATE:
            raise ValueError(f"replicas must be 0 or 1, got {replicas}")

        url = f"{self.base_url}/api/v1/server/scale"
        try:
            r = self._client.put(url, json={"replicas": replicas}, auth=(discord_id, refresh_token))
        except httpx.HTTPError as exc:
            raise ScaleError(f"PUT {url} failed: {exc}") from exc

        _log.info("response: PUT %s: %s response: %s", url, replicas, r.text)
        if r.status_code == 200:
            return
        if r.status_code == 400 and _ALREADY_IN_STATE[replicas] in r.text:
            _log.info("deployment already scaled to %d", replicas)
            return
        raise ScaleError(
            f"failed to scale replica to: {replicas}, status code: {r.status_code}, body: {r.text}"
        )

    def close(self) -> None:
        self._client.close()
