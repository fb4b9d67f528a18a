from __future__ import annotations

from typing import Any, Dict, List

PRICE = "PRICE"
SAC = "SAC"
SYSTEMS = (PRICE, SAC)


def monthly_rate(annual_rate_pct: float) -> float:
    return annual_rate_pct / 100 / 12


def price_payment(loan_amount: float, r: float, n: int) -> float:
    if r == 0:
        return loan_amount / n
    growth = (1 + r) ** n
    return loan_amount * (r * growth) / (growth - 1)


def amortization_schedule(loan_amount: float, annual_rate_pct: float, term_months: int, system: str = PRICE) -> List[Dict[str, Any]]:
    """
    PRICE keeps the payment fixed (French table); SAC keeps the principal
    fixed and the payment shrinks with the balance.
    """
    system = (system or PRICE).upper()
    if system not in SYSTEMS:
        raise ValueError(f"system must be one of {', '.join(SYSTEMS)}")
    if loan_amount <= 0:
        raise ValueError("loan amount must be positive")
    if term_months <= 0:
        raise ValueError("term must be at least one month")
    if annual_rate_pct < 0:
        raise ValueError("interest rate cannot be negative")

    r = monthly_rate(annual_rate_pct)
    n = int(term_months)
    balance = float(loan_amount)
    rows: List[Dict[str, Any]] = []

    fixed_payment = price_payment(loan_amount, r, n) if system == PRICE else None
    fixed_principal = loan_amount / n

    for month in range(1, n + 1):
        interest = balance * r
        if fixed_payment is not None:
            payment = fixed_payment
            principal = payment - interest
        else:
            principal = fixed_principal
            payment = principal + interest
        balance -= principal
        rows.append({
            "month": month,
            "payment": round(payment, 2),
            "interest": round(interest, 2),
            "principal": round(principal, 2),
            "balance": round(balance, 2) if balance > 0.005 else 0.0,
        })
    return rows


def summarize(schedule: List[Dict[str, Any]]) -> Dict[str, float]:
    total_paid = sum(r["payment"] for r in schedule)
    total_interest = sum(r["interest"] for r in schedule)
    return {
        "totalPaid": round(total_paid, 2),
        "totalInterest": round(total_interest, 2),
        "firstPayment": schedule[0]["payment"] if schedule else 0.0,
        "lastPayment": schedule[-1]["payment"] if schedule else 0.0,
    }
