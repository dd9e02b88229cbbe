from __future__ import annotations

import inspect
import time
import uuid
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

import httpx

from hostelgate.client.mirror import MirrorCache
from hostelgate.logging import get_logger

logger = get_logger(__name__)

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
HYDRATION_PATH = "/auth/csrf-token"

Callback = Callable[[httpx.Response], Union[None, Awaitable[None]]]


def generate_tab_id() -> str:
    return uuid.uuid4().hex[:8]


def _flag(headers: Mapping[str, str], name: str) -> bool:
    lowered = {k.lower(): v for k, v in headers.items()}
    return str(lowered.get(name.lower(), "")).lower() == "true"


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


class TabClient:
    """HTTP client bound to one browser-tab identity.

    Every request goes to ``<api_prefix>/tab/<tab_id>/...`` so the server
    resolves this tab's session cookie. Mutating requests carry the CSRF
    token obtained from login or hydration. Successful GETs feed the
    mirror cache and successful writes invalidate it.

    ``on_session_expired`` fires once per lost session, never for requests
    sent with ``X-Skip-Auth-Redirect: true`` or for hydration probes.
    ``on_lockdown`` fires on an emergency-lockdown 503 after the CSRF token
    has been dropped.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        *,
        api_prefix: str = "/api",
        tab_id: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        mirror: Optional[MirrorCache] = None,
        on_session_expired: Optional[Callback] = None,
        on_lockdown: Optional[Callback] = None,
        timeout: float = 10.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.api_prefix = "/" + api_prefix.strip("/") if api_prefix.strip("/") else ""
        self.tab_id = tab_id or generate_tab_id()
        self.csrf_token: Optional[str] = None
        self.mirror = mirror or MirrorCache(api_prefix=self.api_prefix, clock=clock)
        self.on_session_expired = on_session_expired
        self.on_lockdown = on_lockdown
        self._handling_401 = False
        self._http = httpx.AsyncClient(
            base_url=base_url,
            transport=transport,
            timeout=timeout,
            follow_redirects=False,
        )

    async def __aenter__(self) -> "TabClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    def url(self, path: str) -> str:
        return f"{self.api_prefix}/tab/{self.tab_id}/{path.lstrip('/')}"

    async def _notify(self, callback: Optional[Callback], response: httpx.Response) -> None:
        if callback is None:
            return
        result = callback(response)
        if inspect.isawaitable(result):
            await result

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> httpx.Response:
        """Send a request; raises ``httpx.HTTPStatusError`` on 4xx/5xx."""
        method = method.upper()
        send_headers: Dict[str, str] = dict(headers or {})
        if method in MUTATING_METHODS and self.csrf_token:
            send_headers["X-CSRF-Token"] = self.csrf_token

        response = await self._http.request(
            method, self.url(path), params=params, json=json, headers=send_headers
        )

        if response.status_code == 401:
            await self._handle_unauthorized(method, path, send_headers, response)
        elif response.status_code == 503:
            body = _json_or_none(response)
            if isinstance(body, dict) and body.get("emergencyLockdown"):
                logger.warning("client_emergency_lockdown", tab_id=self.tab_id)
                self.csrf_token = None
                self.mirror.clear()
                await self._notify(self.on_lockdown, response)
        response.raise_for_status()

        if method == "GET":
            if not _flag(send_headers, "X-Bypass-Cache"):
                self.mirror.store_response(path, _json_or_none(response), params)
        elif method in MUTATING_METHODS:
            self.mirror.invalidate_by_path(path)
        return response

    async def _handle_unauthorized(
        self,
        method: str,
        path: str,
        headers: Mapping[str, str],
        response: httpx.Response,
    ) -> None:
        is_hydration = method == "GET" and self.mirror.normalize_path(path).startswith(
            HYDRATION_PATH
        )
        if _flag(headers, "X-Skip-Auth-Redirect") or is_hydration:
            return
        self.csrf_token = None
        if self._handling_401:
            return
        self._handling_401 = True
        logger.info("client_session_expired", tab_id=self.tab_id, path=path)
        await self._notify(self.on_session_expired, response)

    async def get(self, path: str, **kwargs) -> httpx.Response:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs) -> httpx.Response:
        return await self.request("POST", path, **kwargs)

    async def put(self, path: str, **kwargs) -> httpx.Response:
        return await self.request("PUT", path, **kwargs)

    async def patch(self, path: str, **kwargs) -> httpx.Response:
        return await self.request("PATCH", path, **kwargs)

    async def delete(self, path: str, **kwargs) -> httpx.Response:
        return await self.request("DELETE", path, **kwargs)

    async def cached_get(
        self,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Any:
        """Decoded GET payload, served from the mirror while it is fresh."""
        bypass = _flag(headers or {}, "X-Bypass-Cache")
        if not bypass and self.mirror.ttl_for_path(path):
            cached = self.mirror.get(self.mirror.make_key(path, params))
            if cached is not None:
                return cached
        response = await self.get(path, params=params, headers=headers)
        return _json_or_none(response)

    async def login(
        self, email: str, password: str, *, device: Optional[str] = None
    ) -> Dict[str, Any]:
        response = await self.post(
            "/auth/login",
            json={"email": email, "password": password, "device": device},
            headers={"X-Skip-Auth-Redirect": "true"},
        )
        data = response.json()["data"]
        self.csrf_token = data["csrf_token"]
        self._handling_401 = False
        return data

    async def hydrate(self) -> Optional[Dict[str, Any]]:
        """Recover the principal and CSRF token for an existing tab session.

        Returns ``None`` when this tab has no live session.
        """
        try:
            response = await self.get(HYDRATION_PATH, headers={"X-Skip-Auth-Redirect": "true"})
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 401:
                self.csrf_token = None
                return None
            raise
        data = response.json()["data"]
        self.csrf_token = data["csrf_token"]
        self._handling_401 = False
        return data

    async def logout(self) -> None:
        try:
            await self.post("/auth/logout", headers={"X-Skip-Auth-Redirect": "true"})
        except httpx.HTTPStatusError as exc:
            # Already gone server-side
            if exc.response.status_code != 401:
                raise
        finally:
            self.csrf_token = None
            self.mirror.clear()

    def refresh_tab_id(self, tab_id: Optional[str] = None) -> str:
        """Switch to a new tab identity; the old tab's session is left behind."""
        self.tab_id = tab_id or generate_tab_id()
        self.csrf_token = None
        self._handling_401 = False
        return self.tab_id

    def invalidate_settings_cache(self) -> None:
        self.mirror.invalidate_by_path("/settings")
