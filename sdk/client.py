from __future__ import annotations

from typing import Any

import httpx


class DocereClient:
    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
        async_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.token = token
        self._transport = transport
        self._async_transport = async_transport

    @property
    def headers(self) -> dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        with httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=self.headers,
            transport=self._transport,
        ) as client:
            res = client.request(method, path, **kwargs)
            res.raise_for_status()
            return res.json()

    def login(self, email: str, password: str) -> dict[str, Any]:
        data = self._request("POST", "/auth/login", json={"email": email, "password": password})
        self.token = data["token"]
        return data

    def health(self) -> dict[str, Any]:
        return self._request("GET", "/health")

    def open_attendance(self, duration_seconds: int | None = None) -> dict[str, Any]:
        return self._request("POST", "/api/attendance/open", json={"duration_seconds": duration_seconds})

    def close_attendance(self) -> dict[str, Any]:
        return self._request("POST", "/api/attendance/close")

    def mark_present(self, student_name: str, date: str | None = None) -> dict[str, Any]:
        return self._request("POST", "/api/attendance/mark", json={"student_name": student_name, "date": date})

    def attendance_status(self) -> dict[str, Any]:
        return self._request("GET", "/api/attendance/status")

    def attendance_for(self, date: str) -> dict[str, Any]:
        return self._request("GET", f"/api/attendance/{date}")

    async def attendance_status_async(self) -> dict[str, Any]:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=self.headers,
            transport=self._async_transport,
        ) as client:
            res = await client.get("/api/attendance/status")
            res.raise_for_status()
            return res.json()
