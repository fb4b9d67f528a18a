"""
Financial health analysis.

Everything above the "Loading" banner is plain arithmetic over rows so it can
be tested without a database. The score is

    round(0.40 * budget_compliance + 0.35 * savings_rate + 0.25 * goal_progress)

and the result for a user/month is cached in ai_analysis_cache for 30 minutes.
"""
from __future__ import annotations

import json
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from homeledger.budget import EXPENSE, INCOME, list_limits, spending_by_category, spent_for_limit
from homeledger.dates import add_months, month_key, months_between, parse_date
from homeledger.db import new_id, query_db, query_one, upsert_record, with_db_cursor

logger = logging.getLogger(__name__)

WEIGHT_BUDGET = 0.40
WEIGHT_SAVINGS = 0.35
WEIGHT_GOALS = 0.25

NO_BUDGETS_COMPLIANCE = 75.0
NO_GOALS_PROGRESS = 50.0
TREND_THRESHOLD_PCT = 5.0
AT_RISK_RATIO = 0.9
OVERSPEND_RATIO = 1.1
LOW_SCORE = 70
MAX_SUGGESTIONS = 3
CACHE_TTL = timedelta(minutes=30)


# =============================================================================
# Scores
# =============================================================================

def budget_compliance(budgets: List[Dict[str, Any]]) -> float:
    if not budgets:
        return NO_BUDGETS_COMPLIANCE
    ok = sum(1 for b in budgets if b["limit"] == 0 or b["spent"] <= b["limit"])
    return ok / len(budgets) * 100


def _totals(transactions: List[Dict[str, Any]]):
    income = sum(float(t["amount"]) for t in transactions if t["type"] == INCOME)
    expense = sum(float(t["amount"]) for t in transactions if t["type"] == EXPENSE)
    return income, expense


def savings_rate(transactions: List[Dict[str, Any]]) -> float:
    income, expense = _totals(transactions)
    if income == 0:
        return 0.0
    return max(0.0, min((income - expense) / income * 100, 100.0))


def goal_progress(goals: List[Dict[str, Any]]) -> float:
    if not goals:
        return NO_GOALS_PROGRESS
    parts = []
    for g in goals:
        target = float(g["target_amount"] or 0)
        parts.append(min(float(g["current_amount"] or 0) / target * 100, 100.0) if target > 0 else 100.0)
    return sum(parts) / len(parts)


def health_score(compliance: float, savings: float, goals: float) -> int:
    return int(round(compliance * WEIGHT_BUDGET + savings * WEIGHT_SAVINGS + goals * WEIGHT_GOALS))


def health_grade(score: int) -> str:
    if score >= 90:
        return "A+"
    if score >= 80:
        return "A"
    if score >= 70:
        return "B"
    if score >= 60:
        return "C"
    return "D"


# =============================================================================
# Trends / risk / suggestions
# =============================================================================

def monthly_expenses(transactions: List[Dict[str, Any]]) -> Dict[str, float]:
    """Expense totals keyed by YYYY-MM, oldest month first."""
    out: Dict[str, float] = {}
    for t in transactions:
        if t["type"] != EXPENSE:
            continue
        m = str(t["date"])[:7]
        out[m] = out.get(m, 0.0) + float(t["amount"])
    return dict(sorted(out.items()))


def spending_trend(transactions: List[Dict[str, Any]]) -> Dict[str, Any]:
    recent = list(monthly_expenses(transactions).values())[-3:]
    month_avg = sum(recent) / max(len(recent), 1)
    prev = recent[-2] if len(recent) >= 2 else month_avg
    cur = recent[-1] if recent else month_avg
    change = (cur - prev) / prev * 100 if prev > 0 else 0.0

    if change > TREND_THRESHOLD_PCT:
        trend = "increasing"
    elif change < -TREND_THRESHOLD_PCT:
        trend = "decreasing"
    else:
        trend = "stable"
    return {"month_avg": round(month_avg), "trend": trend, "change_percent": round(change)}


def at_risk_categories(budgets: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    out = [
        {
            "category": b["category"],
            "limit": b["limit"],
            "spent": b["spent"],
            "percentage": round(b["spent"] / b["limit"] * 100),
        }
        for b in budgets
        if b["limit"] > 0 and b["spent"] > b["limit"] * AT_RISK_RATIO
    ]
    out.sort(key=lambda r: r["percentage"], reverse=True)
    return out


def suggestions(transactions: List[Dict[str, Any]], budgets: List[Dict[str, Any]], score: int) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []

    for b in budgets:
        if b["limit"] > 0 and b["spent"] > b["limit"] * OVERSPEND_RATIO:
            over_pct = round((b["spent"] - b["limit"]) / b["limit"] * 100)
            out.append({
                "id": f"s1-{b['category']}",
                "title": f"Reduzir gastos em {b['category']}",
                "description": f"Seus gastos em {b['category']} excedem o orçamento em {over_pct}%",
                "priority": "high",
                "potential_savings": round(b["spent"] - b["limit"]),
                "category": b["category"],
            })

    if score < LOW_SCORE:
        out.append({
            "id": "s2-reduce-spending",
            "title": "Aumentar receita ou reduzir despesas",
            "description": "Sua saúde financeira pode ser melhorada equilibrando receita e despesas",
            "priority": "high",
            "potential_savings": 500,
            "category": "general",
        })

    largest = sorted(
        (float(t["amount"]) for t in transactions if t["type"] == EXPENSE), reverse=True
    )[:3]
    if largest:
        out.append({
            "id": "s3-consolidate",
            "title": "Consolidar despesas recorrentes",
            "description": "Considere agrupar transações similares para melhor controle",
            "priority": "medium",
            "potential_savings": round(sum(largest) / len(largest) * 0.1),
            "category": "optimization",
        })

    out.append({
        "id": "s4-emergency",
        "title": "Criar fundo de emergência",
        "description": "Reserve 3-6 meses de despesas como proteção",
        "priority": "medium",
        "potential_savings": 0,
        "category": "savings",
    })
    return out[:MAX_SUGGESTIONS]


def months_remaining(deadline: Optional[str], today: date) -> int:
    end = parse_date(deadline)
    if end is None:
        return 0
    return max(months_between(today, end), 0)


def goals_progress(goals: List[Dict[str, Any]], contributions: Dict[str, float], today: date) -> List[Dict[str, Any]]:
    """contributions maps goal id to the amount contributed over the last month."""
    out = []
    for g in goals:
        target = float(g["target_amount"] or 0)
        current = float(g["current_amount"] or 0)
        pct = min(round(current / target * 100), 100) if target > 0 else 100
        left = months_remaining(g.get("deadline"), today)
        needed = (target - current) / max(left, 1)
        out.append({
            "name": g["name"],
            "progress_percent": pct,
            "months_to_target": left,
            "on_track": contributions.get(g["id"], 0.0) >= needed,
        })
    return out


def empty_analysis() -> Dict[str, Any]:
    return {
        "health_score": 0,
        "health_grade": "N/A",
        "spending_trends": {"month_avg": 0, "trend": "stable", "change_percent": 0},
        "savings_potential": 0,
        "at_risk_categories": [],
        "suggestions": [{
            "id": "add-transactions",
            "title": "Adicione transações",
            "description": "Para receber análise, adicione suas transações mensais primeiro",
            "priority": "high",
            "potential_savings": 0,
            "category": "general",
        }],
        "goals_progress": [],
        "monthly_comparison": [],
    }


def calculate_analysis(
    transactions: List[Dict[str, Any]],
    budgets: List[Dict[str, Any]],
    goals: List[Dict[str, Any]],
    contributions: Dict[str, float],
    today: date,
) -> Dict[str, Any]:
    bc = budget_compliance(budgets)
    sr = savings_rate(transactions)
    gp = goal_progress(goals)
    score = health_score(bc, sr, gp)
    income, expense = _totals(transactions)

    return {
        "health_score": score,
        "health_grade": health_grade(score),
        "components": {
            "budget_compliance": round(bc, 2),
            "savings_rate": round(sr, 2),
            "goal_progress": round(gp, 2),
        },
        "spending_trends": spending_trend(transactions),
        "savings_potential": round(max(0.0, income - expense)),
        "at_risk_categories": at_risk_categories(budgets),
        "suggestions": suggestions(transactions, budgets, score),
        "goals_progress": goals_progress(goals, contributions, today),
    }


# =============================================================================
# Loading + cache
# =============================================================================

def _utc_iso(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


def cached_analysis(user_id: str, month: str, now: datetime) -> Optional[Dict[str, Any]]:
    row = query_one(
        "SELECT analysis_data FROM ai_analysis_cache WHERE user_id = $1 AND month = $2 AND expires_at > $3",
        (user_id, month, _utc_iso(now)),
    )
    if row is None:
        return None
    return json.loads(row["analysis_data"])


def store_analysis(user_id: str, month: str, data: Dict[str, Any], now: datetime) -> None:
    with with_db_cursor() as (conn, cur):
        upsert_record(
            cur,
            "ai_analysis_cache",
            {
                "id": new_id("cache"),
                "user_id": user_id,
                "month": month,
                "analysis_data": json.dumps(data),
                "created_at": _utc_iso(now),
                "expires_at": _utc_iso(now + CACHE_TTL),
            },
            ("user_id", "month"),
        )
        conn.commit()


def load_budgets(user_id: str, month: str) -> List[Dict[str, Any]]:
    spending = spending_by_category(user_id, month)
    return [
        {"category": l["category"], "limit": float(l["limit_amount"]), "spent": spent_for_limit(l, spending)}
        for l in list_limits(user_id)
    ]


def recent_contributions(goal_ids: List[str], today: date) -> Dict[str, float]:
    if not goal_ids:
        return {}
    since = add_months(today, -1).isoformat()
    placeholders = ", ".join(f"${i}" for i in range(2, len(goal_ids) + 2))
    rows = query_db(
        f"""
        SELECT goal_id, SUM(amount) AS total
        FROM goal_transactions
        WHERE date >= $1 AND goal_id IN ({placeholders})
        GROUP BY goal_id
        """,
        (since, *goal_ids),
    )
    return {r["goal_id"]: float(r["total"] or 0) for r in rows}


def monthly_comparison(user_id: str) -> List[Dict[str, Any]]:
    rows = query_db(
        """
        SELECT LEFT(date, 7) AS month, SUM(amount) AS spent
        FROM transactions
        WHERE user_id = $1 AND type = $2
        GROUP BY LEFT(date, 7)
        ORDER BY month DESC
        LIMIT 12
        """,
        (user_id, EXPENSE),
    )
    return [{"date": r["month"], "spent": float(r["spent"] or 0)} for r in rows]


def analyze_user(user_id: str, refresh: bool = False, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    today = now.date()
    month = month_key(today)

    if not refresh:
        hit = cached_analysis(user_id, month, now)
        if hit is not None:
            logger.debug("analysis cache hit for %s %s", user_id, month)
            return hit

    transactions = query_db(
        "SELECT id, description, amount, date, category, type FROM transactions WHERE user_id = $1 ORDER BY date DESC",
        (user_id,),
    )
    if not transactions:
        return empty_analysis()

    goals = query_db(
        "SELECT id, name, target_amount, current_amount, deadline FROM savings_goals WHERE user_id = $1",
        (user_id,),
    )
    result = calculate_analysis(
        transactions,
        load_budgets(user_id, month),
        goals,
        recent_contributions([g["id"] for g in goals], today),
        today,
    )
    result["monthly_comparison"] = monthly_comparison(user_id)

    store_analysis(user_id, month, result, now)
    logger.info("analysis stored for %s %s (score %s)", user_id, month, result["health_score"])
    return result
