from __future__ import annotations

from urllib.parse import quote

import requests

from lotemap.lotes.storage import Lote

DEFAULT_TIMEOUT = 10


class ApiError(Exception):
    """The lots API could not be reached or answered with an error."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _to_lote(item: object) -> Lote:
    try:
        return Lote.from_dict(item)
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise ApiError(f"Lote invalido en la respuesta: {item!r}") from exc


class LotesApiClient:
    def __init__(
        self,
        base_url: str,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(self, method: str, path: str, **kwargs) -> dict:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise ApiError(f"{method} {path}: {exc}") from exc
        if not response.ok:
            raise ApiError(f"HTTP {response.status_code}", status_code=response.status_code)
        try:
            data = response.json()
        except ValueError as exc:
            raise ApiError(f"Respuesta invalida de {path}") from exc
        if not isinstance(data, dict):
            raise ApiError(f"Respuesta invalida de {path}")
        return data

    def list_lotes(self) -> list[Lote]:
        payload = self._request("GET", "/api/lotes", headers={"Cache-Control": "no-store"})
        items = payload.get("items")
        if not isinstance(items, list):
            return []
        return [_to_lote(item) for item in items]

    def update_lote(self, lote_id: str, payload: dict[str, object]) -> Lote | None:
        data = self._request("PUT", f"/api/lotes/{quote(lote_id, safe='')}", json=payload)
        item = data.get("item")
        return _to_lote(item) if item is not None else None
