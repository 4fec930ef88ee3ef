"""Revenue metrics pulled from a founder's own Stripe account.

These calls use the founder's pasted secret key, not the platform key, so they
go straight to the REST API with httpx instead of the global stripe client.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from truststartup.core.config import settings
from truststartup.schemas.startup import RevenuePoint, StripeSummaryMetrics

logger = logging.getLogger(__name__)

RANGE_DAYS = {"7d": 7, "30d": 30, "90d": 90}
PAGE_LIMIT = 100


class StripeMetricsError(Exception):
    pass


@dataclass
class StripeMetrics:
    revenue: float
    mrr: float


def _client(stripe_key: str) -> httpx.Client:
    return httpx.Client(
        base_url=settings.STRIPE_API_BASE,
        headers={"Authorization": f"Bearer {stripe_key}"},
        timeout=settings.STRIPE_TIMEOUT_SECONDS,
    )


def _get(client: httpx.Client, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    try:
        resp = client.get(path, params=params)
    except httpx.HTTPError as exc:
        logger.warning("stripe_metrics_request_failed", extra={"path": path, "error": str(exc)})
        raise StripeMetricsError("Unable to reach Stripe") from exc

    if resp.status_code != 200:
        logger.warning("stripe_metrics_non_200", extra={"path": path, "status_code": resp.status_code})
        raise StripeMetricsError(f"Stripe responded with HTTP {resp.status_code}")
    return resp.json()


def _paid_charges(payload: dict[str, Any]) -> list[dict[str, Any]]:
    return [charge for charge in payload.get("data") or [] if charge.get("paid") and charge.get("amount")]


def _sum_charges(charges: list[dict[str, Any]]) -> float:
    return sum(charge.get("amount") or 0 for charge in charges) / 100


def _estimate_mrr(payload: dict[str, Any]) -> float:
    total = 0
    for subscription in payload.get("data") or []:
        if subscription.get("status") != "active":
            continue
        items = (subscription.get("items") or {}).get("data") or []
        if not items:
            continue
        total += ((items[0].get("plan") or {}).get("amount")) or 0
    return total / 100


def _since(now: datetime, days: int) -> int:
    return int((now - timedelta(days=days)).timestamp())


def fetch_stripe_metrics(stripe_key: str) -> StripeMetrics:
    with _client(stripe_key) as client:
        charges = _get(client, "/charges", {"limit": PAGE_LIMIT})
        subscriptions = _get(client, "/subscriptions", {"limit": PAGE_LIMIT})
    return StripeMetrics(
        revenue=round(_sum_charges(_paid_charges(charges)), 2),
        mrr=round(_estimate_mrr(subscriptions), 2),
    )


def fetch_summary_metrics(stripe_key: str, now: datetime | None = None) -> StripeSummaryMetrics:
    now = now or datetime.now(timezone.utc)
    with _client(stripe_key) as client:
        all_charges = _get(client, "/charges", {"limit": PAGE_LIMIT})
        recent_charges = _get(client, "/charges", {"limit": PAGE_LIMIT, "created[gte]": _since(now, 30)})
        subscriptions = _get(client, "/subscriptions", {"limit": PAGE_LIMIT})
        account_created_at = None
        try:
            account = _get(client, "/account")
        except StripeMetricsError:
            logger.warning("stripe_account_lookup_failed")
        else:
            if account.get("created"):
                account_created_at = datetime.fromtimestamp(account["created"], tz=timezone.utc)

    return StripeSummaryMetrics(
        gmv_all_time=round(_sum_charges(_paid_charges(all_charges)), 2),
        last_30_days=round(_sum_charges(_paid_charges(recent_charges)), 2),
        mrr=round(_estimate_mrr(subscriptions), 2),
        account_created_at=account_created_at,
    )


def _day_start(value: datetime) -> datetime:
    return value.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)


def fetch_revenue_history(stripe_key: str, range_key: str, now: datetime | None = None) -> list[RevenuePoint]:
    """Daily revenue for the range, one point per UTC day, oldest first."""

    now = now or datetime.now(timezone.utc)
    days = RANGE_DAYS.get(range_key, 90)
    first_day = _day_start(now - timedelta(days=days - 1))
    with _client(stripe_key) as client:
        payload = _get(client, "/charges", {"limit": PAGE_LIMIT, "created[gte]": int(first_day.timestamp())})

    buckets = {first_day + timedelta(days=offset): 0.0 for offset in range(days)}

    for charge in _paid_charges(payload):
        day = _day_start(datetime.fromtimestamp(charge.get("created") or 0, tz=timezone.utc))
        if day in buckets:
            buckets[day] += (charge.get("amount") or 0) / 100

    return [RevenuePoint(date=day, revenue=round(total, 2)) for day, total in sorted(buckets.items())]
