# smart_intake/clients/cms_provider.py
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from ..config import settings
from ..domain.errors import CollaboratorUnavailable


@dataclass(frozen=True)
class CMSProvider:
    ccn: str
    name: str
    city: Optional[str]
    state: Optional[str]
    certified_beds: Optional[int]
    overall_rating: Optional[int]
    health_inspection_rating: Optional[int]
    staffing_rating: Optional[int]
    quality_rating: Optional[int]
    special_focus_status: Optional[str]
    raw: dict[str, Any]

    @property
    def is_sff(self) -> bool:
        s = (self.special_focus_status or "").lower()
        return "sff" in s and "candidate" not in s


def _first(row: dict[str, Any], *keys: str) -> Any:
    for k in keys:
        v = row.get(k)
        if v not in (None, ""):
            return v
    return None


def _to_int(x: Any) -> Optional[int]:
    if x is None:
        return None
    try:
        return int(float(str(x).strip()))
    except ValueError:
        return None


def normalize_ccn(ccn: str) -> str:
    return re.sub(r"\D", "", ccn or "").zfill(6)


def provider_from_row(row: dict[str, Any]) -> CMSProvider:
    """Accepts both the provider-data catalog and the older data-api column names."""
    return CMSProvider(
        ccn=str(_first(row, "cms_certification_number_ccn", "federal_provider_number") or ""),
        name=str(_first(row, "provider_name") or ""),
        city=_first(row, "citytown", "provider_city"),
        state=_first(row, "state", "provider_state"),
        certified_beds=_to_int(_first(row, "number_of_certified_beds")),
        overall_rating=_to_int(_first(row, "overall_rating")),
        health_inspection_rating=_to_int(_first(row, "health_inspection_rating")),
        staffing_rating=_to_int(_first(row, "staffing_rating")),
        quality_rating=_to_int(_first(row, "qm_rating", "quality_measure_rating")),
        special_focus_status=_first(row, "special_focus_status"),
        raw=row,
    )


class CMSProviderClient:
    """Nursing home provider information from the CMS provider-data catalog."""

    def __init__(self, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.base = settings.cms_base_url.rstrip("/")
        self.dataset = settings.cms_dataset_id
        self.timeout = float(settings.cms_timeout_seconds)
        self._transport = transport

    def enabled(self) -> bool:
        return bool(settings.cms_enabled and self.base)

    async def _query(self, conditions: list[tuple[str, str, str]], *, limit: int) -> list[dict[str, Any]]:
        if not self.enabled():
            raise CollaboratorUnavailable("CMS lookups disabled")

        url = f"{self.base}/datastore/query/{self.dataset}/0"
        params: dict[str, Any] = {"limit": limit, "offset": 0}
        for i, (prop, op, value) in enumerate(conditions):
            params[f"conditions[{i}][property]"] = prop
            params[f"conditions[{i}][operator]"] = op
            params[f"conditions[{i}][value]"] = value

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                r = await client.get(url, params=params, headers={"Accept": "application/json"})
                r.raise_for_status()
                data = r.json()
        except httpx.HTTPError as e:
            raise CollaboratorUnavailable(f"CMS request failed: {e}", e) from e
        except ValueError as e:
            raise CollaboratorUnavailable("CMS returned invalid JSON", e) from e

        rows = data.get("results") if isinstance(data, dict) else data
        return [r for r in (rows or []) if isinstance(r, dict)]

    async def get_by_ccn(self, ccn: str) -> Optional[CMSProvider]:
        rows = await self._query([("cms_certification_number_ccn", "=", normalize_ccn(ccn))], limit=1)
        return provider_from_row(rows[0]) if rows else None

    async def search(self, name: str, state: Optional[str] = None, *, limit: int = 20) -> list[CMSProvider]:
        conditions = [("provider_name", "contains", name.upper())]
        if state:
            conditions.append(("state", "=", state.upper()))
        rows = await self._query(conditions, limit=limit)
        return [provider_from_row(r) for r in rows]
