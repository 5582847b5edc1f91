from typing import Any, Dict, Optional

import httpx


class SupabaseError(RuntimeError):
    pass


def _api_ok(resp: httpx.Response, ctx: str) -> Any:
    t = resp.text
    try:
        resp.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise SupabaseError(f"{ctx} | HTTP {resp.status_code} | body: {t}") from e
    if not t.strip():
        return None
    return resp.json()


class SupabaseClient:
    """
    Thin wrapper over the PostgREST, RPC and Storage endpoints of one project.
    Owns a single httpx.Client; close() it (or use as a context manager).
    """

    def __init__(
        self,
        url: str,
        service_key: str,
        timeout: float = 60.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.url = url.rstrip("/")
        self.client = httpx.Client(
            base_url=self.url,
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
            headers={
                "apikey": service_key,
                "Authorization": f"Bearer {service_key}",
            },
        )

    def __enter__(self) -> "SupabaseClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        self.client.close()

    def select(self, table: str, params: Dict[str, str]) -> list:
        r = self.client.get(f"/rest/v1/{table}", params=params)
        rows = _api_ok(r, f"Select from {table} failed")
        return rows or []

    def update(self, table: str, filters: Dict[str, str], values: Dict[str, Any]) -> None:
        r = self.client.patch(
            f"/rest/v1/{table}",
            params=filters,
            json=values,
            headers={"Prefer": "return=minimal"},
        )
        _api_ok(r, f"Update of {table} failed")

    def rpc(self, fn: str, args: Dict[str, Any]) -> Any:
        r = self.client.post(f"/rest/v1/rpc/{fn}", json=args)
        return _api_ok(r, f"RPC {fn} failed")

    def upload(self, bucket: str, key: str, data: bytes, content_type: str, upsert: bool = True) -> None:
        r = self.client.post(
            f"/storage/v1/object/{bucket}/{key}",
            content=data,
            headers={
                "Content-Type": content_type,
                "x-upsert": "true" if upsert else "false",
            },
        )
        _api_ok(r, f"Upload of {bucket}/{key} failed")

    def public_url(self, bucket: str, key: str) -> str:
        return f"{self.url}/storage/v1/object/public/{bucket}/{key}"
