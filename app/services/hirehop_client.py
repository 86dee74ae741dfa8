# app/services/hirehop_client.py
"""
HireHop client for equipment line items shown on delivery notes.
Best-effort: any failure yields an empty item list.
"""

from urllib.parse import quote

import httpx

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.completion_domain import LineItem
from app.services.infrastructure.retry_client import RetryingMutationClient, retry_client

logger = get_logger(__name__)

# Vehicles, delivery/collection charges, crew and admin charges
EXCLUDED_CATEGORY_IDS = {369, 370, 371, 496, 497, 498, 499, 500}


class HireHopError(Exception):
    def __init__(self, message: str, status_code: int | None = None, retryable: bool | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


def _is_virtual(raw: dict) -> bool:
    value = raw.get("VIRTUAL", raw.get("virtual"))
    return value in ("1", 1, True)


def _category_id(raw: dict) -> int | None:
    try:
        return int(raw["CATEGORY_ID"])
    except (KeyError, TypeError, ValueError):
        return None


def _quantity(raw: dict) -> int:
    for key in ("qty", "QTY", "quantity", "QUANTITY"):
        if raw.get(key) not in (None, ""):
            try:
                return int(float(raw[key]))
            except (TypeError, ValueError):
                break
    return 1


def parse_equipment_items(raw_items: list[dict]) -> list[LineItem]:
    """Map raw supply-list rows to line items, keeping physical equipment only."""
    items = []
    for raw in raw_items:
        if not isinstance(raw, dict) or _is_virtual(raw):
            continue
        if _category_id(raw) in EXCLUDED_CATEGORY_IDS:
            continue
        name = str(raw.get("NAME") or raw.get("name") or raw.get("title") or "").strip()
        if not name:
            continue
        items.append(
            LineItem(
                name=name,
                quantity=_quantity(raw),
                category=str(raw["CATEGORY"]) if raw.get("CATEGORY") else None,
            )
        )
    return items


class HireHopClient:
    def __init__(self, retry: RetryingMutationClient | None = None):
        self._retry = retry or retry_client
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(settings.REQUEST_TIMEOUT_SECONDS))

    async def close(self) -> None:
        await self._client.aclose()

    def items_url(self, hh_ref: str) -> str:
        token = quote(settings.HIREHOP_API_TOKEN or "", safe="")
        return (
            f"https://{settings.HIREHOP_DOMAIN}/frames/items_to_supply_list.php"
            f"?job={quote(hh_ref, safe='')}&token={token}"
        )

    async def _fetch_raw_items(self, hh_ref: str) -> list[dict]:
        response = await self._client.get(self.items_url(hh_ref))
        if not response.is_success:
            raise HireHopError(
                f"HireHop items fetch failed: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        text = response.text.strip()
        if text.startswith("<"):
            # HTML page instead of JSON means the token was rejected
            raise HireHopError("HireHop returned HTML, check HIREHOP_API_TOKEN", retryable=False)

        try:
            parsed = response.json()
        except ValueError as e:
            raise HireHopError("Failed to parse HireHop response", retryable=False) from e

        return parsed if isinstance(parsed, list) else parsed.get("items") or []

    async def get_equipment_items(self, hh_ref: str | None) -> list[LineItem]:
        """Equipment line items for a HireHop job, or [] when unavailable."""
        if not hh_ref or not settings.HIREHOP_API_TOKEN:
            return []

        try:
            raw_items = await self._retry.execute(
                lambda: self._fetch_raw_items(hh_ref),
                operation_name="hirehop.items_to_supply_list",
                hh_ref=hh_ref,
            )
        except Exception as e:
            logger.warning("HireHop items unavailable", hh_ref=hh_ref, error=str(e))
            return []

        items = parse_equipment_items(raw_items)
        logger.info(
            "HireHop items fetched", hh_ref=hh_ref, raw_count=len(raw_items), item_count=len(items)
        )
        return items


# Singleton instance for application use
hirehop_client = HireHopClient()
