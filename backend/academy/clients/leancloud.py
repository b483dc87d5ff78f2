from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

import httpx

OBJECT_NOT_FOUND = 101
USER_NOT_FOUND = 211
DUPLICATE_VALUE = 137
CONDITION_NOT_MET = 305


@dataclass(frozen=True)
class LeanCloudError(Exception):
    message: str
    status_code: int | None = None
    body: str | None = None

    def __str__(self) -> str:
        return self.message

    @property
    def code(self) -> int | None:
        """LeanCloud's numeric error code from the response body, if any."""
        if not self.body:
            return None
        try:
            payload = json.loads(self.body)
        except json.JSONDecodeError:
            return None
        if not isinstance(payload, dict):
            return None
        code = payload.get("code")
        return code if isinstance(code, int) else None


class LeanCloudClient:
    def __init__(
        self,
        *,
        app_id: str,
        app_key: str,
        master_key: str,
        server_url: str,
        timeout: float = 10.0,
        retries: int = 2,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._retries = retries
        self._client = httpx.AsyncClient(
            base_url=server_url,
            timeout=timeout,
            transport=transport,
            headers={
                "X-LC-Id": app_id,
                "X-LC-Key": f"{master_key},master",
                "Accept": "application/json",
            },
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        # Writes may have committed before the failure; only reads are repeated.
        retries = self._retries if method == "GET" else 0
        last_error: Exception | None = None
        for attempt in range(retries + 1):
            try:
                response = await self._client.request(method, path, **kwargs)
            except httpx.RequestError as exc:
                last_error = exc
            else:
                if response.status_code >= 500:
                    last_error = LeanCloudError(
                        f"LeanCloud error {response.status_code}",
                        status_code=response.status_code,
                        body=response.text,
                    )
                else:
                    return response
            if attempt < retries:
                continue
        raise LeanCloudError("LeanCloud request failed") from last_error

    async def request_json(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        response = await self._request(method, path, **kwargs)
        if not response.is_success:
            raise LeanCloudError(
                f"LeanCloud error {response.status_code}: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        if not response.text:
            return {}
        return response.json()

    async def get_json(self, path: str, **kwargs: Any) -> dict[str, Any]:
        return await self.request_json("GET", path, **kwargs)

    async def post_json(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self.request_json("POST", path, json=payload)

    async def put_json(
        self,
        path: str,
        payload: dict[str, Any],
        *,
        where: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        # A where clause turns the write into a conditional update (code 305 on miss).
        params = {"where": json.dumps(where)} if where else None
        return await self.request_json("PUT", path, json=payload, params=params)

    async def delete_json(
        self, path: str, *, where: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        params = {"where": json.dumps(where)} if where else None
        return await self.request_json("DELETE", path, params=params)
