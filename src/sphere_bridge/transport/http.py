"""
REST HTTP client for the wallet daemon.
"""

from typing import Any, Optional

import httpx

from sphere_bridge.errors import WalletServiceError

DEFAULT_WALLET_URL = "http://127.0.0.1:8766"


class HttpClient:
    def __init__(
        self,
        base_url: str = DEFAULT_WALLET_URL,
        token: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._client = httpx.AsyncClient(
            base_url=f"{self._base_url}/api",
            headers={"User-Agent": "sphere-bridge/0.1.0", "Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    def _auth_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    @staticmethod
    def _unwrap(json_data: Any) -> Any:
        """Unwrap the daemon envelope: { "status": "success", "data": <actual_data> }"""
        if isinstance(json_data, dict) and "status" in json_data and "data" in json_data:
            return json_data["data"]
        return json_data

    @staticmethod
    def _error_message(resp: httpx.Response) -> str:
        try:
            body = resp.json()
        except ValueError:
            return f"HTTP {resp.status_code}: {resp.text[:200]}"
        if isinstance(body, dict) and isinstance(body.get("error"), str):
            return body["error"]
        return f"HTTP {resp.status_code}: {resp.text[:200]}"

    async def _send(self, method: str, path: str, body: Optional[dict[str, Any]] = None) -> Any:
        try:
            resp = await self._client.request(method, path, json=body, headers=self._auth_headers())
        except httpx.HTTPError as e:
            raise WalletServiceError(f"Wallet service unreachable: {e}") from e
        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            raise WalletServiceError(self._error_message(resp), resp.status_code)
        if not resp.content:
            return None
        return self._unwrap(resp.json())

    async def get(self, path: str) -> Any:
        return await self._send("GET", path)

    async def post(self, path: str, body: Optional[dict[str, Any]] = None) -> Any:
        return await self._send("POST", path, body)

    async def close(self) -> None:
        await self._client.aclose()
