"""
Exchange rates and inflation data for the dashboards.

Rates are expressed as AOA per one unit of the foreign currency. Live rates
come from the Fawaz Ahmed currency feed and are cached in exchange_rates for
an hour; when the feed is unreachable the provider's built-in table is
served instead.
"""
from __future__ import annotations

import json
import logging
import math
import threading
import time
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import requests

from homeledger.dates import add_months
from homeledger.db import query_one, upsert_record, with_db_cursor

logger = logging.getLogger(__name__)

PROVIDERS = ("BNA", "FOREX", "PARALLEL", "EXCHANGERATE_API", "FAWAZ_AHMED")
DEFAULT_PROVIDER = "BNA"
CURRENCIES = ("USD", "EUR", "BRL", "GBP", "CNY", "ZAR", "JPY")

FAWAZ_USD_URL = "https://cdn.jsdelivr.net/npm/@fawazahmed0/currency-api@latest/v1/currencies/usd.json"
WORLD_BANK_CPI_URL = (
    "https://api.worldbank.org/v2/country/AO/indicator/FP.CPI.TOTL.ZG"
    "?format=json&per_page=100&date=2020:2025"
)
HTTP_TIMEOUT = 5
RATES_TTL = timedelta(hours=1)
INFLATION_TTL_SECONDS = 12 * 60 * 60

# USD cross rates used when the feed omits a currency
USD_CROSS_DEFAULTS = {"aoa": 912.50, "eur": 0.92, "brl": 5.15, "gbp": 0.79, "cny": 7.25, "zar": 18.05, "jpy": 153.50}

FALLBACK_RATES: Dict[str, Dict[str, float]] = {
    "BNA": {"USD": 926.50, "EUR": 1003.20, "BRL": 188.10, "GBP": 1168.00, "CNY": 127.30, "ZAR": 49.10, "JPY": 6.35},
    "FOREX": {"USD": 930.10, "EUR": 1008.50, "BRL": 189.50, "GBP": 1175.20, "CNY": 128.00, "ZAR": 49.50, "JPY": 6.40},
    "PARALLEL": {"USD": 1150.00, "EUR": 1240.00, "BRL": 230.00, "GBP": 1450.00, "CNY": 160.00, "ZAR": 60.00, "JPY": 8.00},
}

VOLATILITY = {"BNA": 0.015, "FOREX": 0.02, "PARALLEL": 0.035}
PERIOD_MONTHS = {"1A": 12, "2A": 24, "5A": 60}
MONTH_LABELS = ["Jan", "Fev", "Mar", "Abr", "Mai", "Jun", "Jul", "Ago", "Set", "Out", "Nov", "Dez"]


class MarketDataError(RuntimeError):
    pass


def normalize_provider(provider: Optional[str]) -> str:
    p = (provider or DEFAULT_PROVIDER).upper()
    return p if p in PROVIDERS else DEFAULT_PROVIDER


def _iso(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


# =============================================================================
# Exchange rates
# =============================================================================

def fetch_live_rates() -> Dict[str, float]:
    r = requests.get(FAWAZ_USD_URL, timeout=HTTP_TIMEOUT)
    r.raise_for_status()
    usd = (r.json() or {}).get("usd") or {}
    if not usd.get("aoa"):
        raise MarketDataError("feed has no AOA rate")

    aoa_per_usd = float(usd["aoa"])
    rates = {"USD": aoa_per_usd}
    for cur in CURRENCIES:
        if cur == "USD":
            continue
        per_usd = float(usd.get(cur.lower()) or USD_CROSS_DEFAULTS[cur.lower()])
        rates[cur] = aoa_per_usd / per_usd
    return {k: round(v, 4) for k, v in rates.items()}


def fallback_rates(provider: str) -> Dict[str, float]:
    return dict(FALLBACK_RATES.get(provider) or FALLBACK_RATES[DEFAULT_PROVIDER])


def _rates_payload(rates: Dict[str, float], last_update: str, source: str, provider: str) -> Dict[str, Any]:
    out: Dict[str, Any] = {"AOA": 1}
    out.update(rates)
    out["lastUpdate"] = last_update
    out["source"] = source
    out["provider"] = provider
    return out


def get_exchange_rates(provider: Optional[str] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
    provider = normalize_provider(provider)
    now = now or datetime.now(timezone.utc)

    # informal market quotes have no public feed
    if provider == "PARALLEL":
        return _rates_payload(fallback_rates(provider), _iso(now), "fallback", provider)

    cached = query_one("SELECT * FROM exchange_rates WHERE provider = $1", (provider,))
    if cached and cached.get("next_update") and cached["next_update"] > _iso(now):
        return _rates_payload(json.loads(cached["rates"]), cached["last_update"], "cached", provider)

    try:
        rates = fetch_live_rates()
    except (requests.RequestException, ValueError, MarketDataError) as e:
        logger.warning("live rates unavailable for %s, using fallback: %s", provider, e)
        return _rates_payload(fallback_rates(provider), _iso(now), "fallback", provider)

    with with_db_cursor() as (conn, cur):
        upsert_record(
            cur,
            "exchange_rates",
            {
                "provider": provider,
                "rates": json.dumps(rates),
                "last_update": _iso(now),
                "next_update": _iso(now + RATES_TTL),
            },
            "provider",
        )
        conn.commit()
    logger.info("live rates refreshed for %s (USD=%s)", provider, rates.get("USD"))
    return _rates_payload(rates, _iso(now), "live", provider)


# =============================================================================
# Inflation
# =============================================================================

def seeded_random(seed: int) -> float:
    x = math.sin(seed) * 10000
    return x - math.floor(x)


def fallback_inflation() -> List[Dict[str, Any]]:
    seed = 42
    acc = 24.5
    out = []
    for i, label in enumerate(MONTH_LABELS):
        monthly = seeded_random(seed + i) * 1.0 + 1.5
        acc += seeded_random(seed + i + 100) * 0.4 + 0.1
        out.append({"month": label, "rate": round(monthly, 2), "accumulated": round(acc, 2)})
    return out


def inflation_from_yearly(records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    yearly = sorted(
        (r for r in records if r.get("value") is not None and r.get("date")),
        key=lambda r: int(r["date"]),
    )
    if not yearly:
        raise MarketDataError("no inflation data available")
    base = float(yearly[-1]["value"])
    return [
        {
            "month": label,
            "rate": round(max(0.0, base / 12 + math.sin(i) * 0.5), 2),
            "accumulated": round(base, 2),
        }
        for i, label in enumerate(MONTH_LABELS)
    ]


class InflationCache:
    def __init__(self, ttl_seconds: float = INFLATION_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self._data: Optional[List[Dict[str, Any]]] = None
        self._stamp = 0.0
        self._lock = threading.Lock()

    def get(self) -> Optional[List[Dict[str, Any]]]:
        with self._lock:
            if self._data is not None and time.monotonic() - self._stamp < self.ttl_seconds:
                return self._data
            return None

    def put(self, data: List[Dict[str, Any]]) -> None:
        with self._lock:
            self._data = data
            self._stamp = time.monotonic()

    def clear(self) -> None:
        with self._lock:
            self._data = None


inflation_cache = InflationCache()


def get_inflation_history() -> List[Dict[str, Any]]:
    hit = inflation_cache.get()
    if hit is not None:
        return hit

    try:
        r = requests.get(WORLD_BANK_CPI_URL, timeout=HTTP_TIMEOUT)
        r.raise_for_status()
        payload = r.json()
        records = payload[1] if isinstance(payload, list) and len(payload) > 1 and payload[1] else []
        data = inflation_from_yearly(records)
    except (requests.RequestException, ValueError, MarketDataError) as e:
        logger.warning("World Bank inflation unavailable, using fallback: %s", e)
        data = fallback_inflation()

    inflation_cache.put(data)
    return data


# =============================================================================
# Currency history (simulated from the provider table)
# =============================================================================

def _provider_seed(provider: str) -> int:
    return {"BNA": 1, "FOREX": 2}.get(provider, 3)


def currency_history(base: str, target: str, period: str = "1A", provider: str = DEFAULT_PROVIDER, today: Optional[date] = None) -> List[Dict[str, Any]]:
    """
    Walk backwards from today's cross rate with a seeded random drift, so the
    same arguments always give the same series. Oldest point first.
    """
    base = base.upper()
    target = target.upper()
    provider = normalize_provider(provider)
    if period not in PERIOD_MONTHS:
        raise ValueError(f"period must be one of {', '.join(PERIOD_MONTHS)}")
    table = fallback_rates(provider if provider in FALLBACK_RATES else DEFAULT_PROVIDER)
    for code in (base, target):
        if code != "AOA" and code not in table:
            raise ValueError(f"unsupported currency: {code}")

    today = today or date.today()
    months = PERIOD_MONTHS[period]
    base_aoa = 1.0 if base == "AOA" else table[base]
    target_aoa = 1.0 if target == "AOA" else table[target]
    rate = base_aoa / target_aoa
    volatility = VOLATILITY.get(provider, VOLATILITY[DEFAULT_PROVIDER])
    seed = ord(base[0]) + ord(target[0]) + _provider_seed(provider) * 100 + (list(PERIOD_MONTHS).index(period) + 1) * 1000

    points = [{"date": "Atual", "rate": round(rate, 4)}]
    first_of_month = today.replace(day=1)
    for i in range(1, months + 1):
        change = 1 + (seeded_random(seed + i) * volatility * 2 - volatility)
        rate = rate / change
        d = add_months(first_of_month, -i)
        points.insert(0, {"date": f"{MONTH_LABELS[d.month - 1]}/{d.strftime('%y')}", "rate": round(rate, 4)})
    return points
