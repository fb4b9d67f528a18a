from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException

from homeledger.dates import now_iso
from homeledger.db import new_id, query_db, query_one, with_db_cursor
from homeledger.routes import CamelModel, as_number, require_fields
from homeledger.security import current_user
from homeledger.simulations import PRICE, amortization_schedule, summarize

router = APIRouter(prefix="/simulations", tags=["simulations"])


class SimulationBody(CamelModel):
    name: Optional[str] = None
    loan_amount: Any = None
    interest_rate_annual: Any = None
    term_months: Any = None
    amortization_system: Optional[str] = None


def _inputs(payload: SimulationBody):
    for field, value in (
        ("loanAmount", payload.loan_amount),
        ("interestRateAnnual", payload.interest_rate_annual),
        ("termMonths", payload.term_months),
    ):
        if value is None:
            raise HTTPException(status_code=400, detail=f"Missing required fields: {field}")
    loan = as_number(payload.loan_amount, "loanAmount")
    rate = as_number(payload.interest_rate_annual, "interestRateAnnual")
    term = as_number(payload.term_months, "termMonths")
    if term != int(term):
        raise HTTPException(status_code=400, detail="termMonths must be a whole number")
    system = (payload.amortization_system or PRICE).upper()
    try:
        schedule = amortization_schedule(loan, rate, int(term), system)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return loan, rate, int(term), system, schedule


def simulation_view(s: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": s["id"],
        "name": s["name"],
        "loanAmount": float(s["loan_amount"]),
        "interestRateAnnual": float(s["interest_rate_annual"]),
        "termMonths": int(s["term_months"]),
        "amortizationSystem": s["amortization_system"],
        "createdAt": s["created_at"],
    }


@router.post("/calculate")
def calculate(payload: SimulationBody, user: Dict[str, Any] = Depends(current_user)):
    loan, rate, term, system, schedule = _inputs(payload)
    return {
        "loanAmount": loan,
        "interestRateAnnual": rate,
        "termMonths": term,
        "amortizationSystem": system,
        "schedule": schedule,
        "summary": summarize(schedule),
    }


@router.get("")
def list_saved(user: Dict[str, Any] = Depends(current_user)):
    rows = query_db("SELECT * FROM saved_simulations WHERE user_id = $1 ORDER BY created_at DESC", (user["id"],))
    return [simulation_view(s) for s in rows]


@router.post("", status_code=201)
def save(payload: SimulationBody, user: Dict[str, Any] = Depends(current_user)):
    require_fields(payload, "name")
    loan, rate, term, system, _ = _inputs(payload)

    sim_id = new_id("sim")
    with with_db_cursor() as (conn, cur):
        cur.execute(
            """
            INSERT INTO saved_simulations (id, user_id, name, loan_amount, interest_rate_annual,
                                           term_months, amortization_system, created_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            """,
            (sim_id, user["id"], payload.name.strip(), loan, rate, term, system, now_iso()),
        )
        conn.commit()
    return simulation_view(query_one("SELECT * FROM saved_simulations WHERE id = $1", (sim_id,)))


@router.delete("/{sim_id}")
def delete(sim_id: str, user: Dict[str, Any] = Depends(current_user)):
    with with_db_cursor() as (conn, cur):
        cur.execute("DELETE FROM saved_simulations WHERE id = $1 AND user_id = $2", (sim_id, user["id"]))
        deleted = cur.rowcount
        conn.commit()
    if not deleted:
        raise HTTPException(status_code=404, detail="Simulation not found")
    return {"message": "Simulation deleted"}
