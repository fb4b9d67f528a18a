from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException

from homeledger.dates import now_iso, parse_date
from homeledger.db import new_id, query_db, query_one, with_db_cursor
from homeledger.routes import CamelModel
from homeledger.security import current_user

router = APIRouter(prefix="/family", tags=["family"])

DEFAULT_EVENT_TYPE = "general"

TASK_SELECT = """
    SELECT t.*, u.name AS assigned_to_name
    FROM family_tasks t
    LEFT JOIN users u ON t.assigned_to = u.id
"""


class TaskBody(CamelModel):
    description: Optional[str] = None
    assigned_to: Optional[str] = None
    is_completed: Optional[bool] = None
    due_date: Optional[str] = None


class EventBody(CamelModel):
    title: Optional[str] = None
    date: Optional[str] = None
    type: Optional[str] = None
    description: Optional[str] = None


def task_view(t: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": t["id"],
        "description": t["description"],
        "assignedTo": t.get("assigned_to"),
        "assignedToName": t.get("assigned_to_name"),
        "isCompleted": bool(t.get("is_completed")),
        "dueDate": t.get("due_date"),
    }


def event_view(e: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": e["id"],
        "title": e["title"],
        "date": e["date"],
        "type": e.get("type") or DEFAULT_EVENT_TYPE,
        "description": e.get("description"),
    }


def _family_row(table: str, row_id: str, user: Dict[str, Any], label: str) -> Dict[str, Any]:
    row = query_one(f"SELECT * FROM {table} WHERE id = $1", (row_id,))
    if row is None:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    if row["family_id"] != user.get("familyId"):
        raise HTTPException(status_code=403, detail="Access denied")
    return row


def _check_date(value: Optional[str]) -> None:
    if value and parse_date(value) is None:
        raise HTTPException(status_code=400, detail=f"Bad ISO date: {value!r}")


# =============================================================================
# Tasks
# =============================================================================

@router.get("/tasks")
def list_tasks(user: Dict[str, Any] = Depends(current_user)):
    rows = query_db(TASK_SELECT + " WHERE t.family_id = $1 ORDER BY t.due_date ASC", (user["familyId"],))
    return [task_view(t) for t in rows]


@router.post("/tasks", status_code=201)
def create_task(payload: TaskBody, user: Dict[str, Any] = Depends(current_user)):
    if not payload.description:
        raise HTTPException(status_code=400, detail="Description is required")
    _check_date(payload.due_date)

    task_id = new_id("task")
    with with_db_cursor() as (conn, cur):
        cur.execute(
            """
            INSERT INTO family_tasks (id, family_id, description, assigned_to, is_completed, due_date, created_at)
            VALUES ($1, $2, $3, $4, 0, $5, $6)
            """,
            (task_id, user["familyId"], payload.description, payload.assigned_to or None, payload.due_date or None, now_iso()),
        )
        conn.commit()
    return task_view(query_one(TASK_SELECT + " WHERE t.id = $1", (task_id,)))


@router.put("/tasks/{task_id}")
def update_task(task_id: str, payload: TaskBody, user: Dict[str, Any] = Depends(current_user)):
    existing = _family_row("family_tasks", task_id, user, "Task")
    _check_date(payload.due_date)

    fields = payload.model_fields_set
    is_completed = existing["is_completed"]
    if "is_completed" in fields:
        is_completed = 1 if payload.is_completed else 0

    with with_db_cursor() as (conn, cur):
        cur.execute(
            """
            UPDATE family_tasks
            SET description = $1, assigned_to = $2, is_completed = $3, due_date = $4
            WHERE id = $5
            """,
            (
                payload.description or existing["description"],
                payload.assigned_to if "assigned_to" in fields else existing.get("assigned_to"),
                is_completed,
                payload.due_date if "due_date" in fields else existing.get("due_date"),
                task_id,
            ),
        )
        conn.commit()
    return task_view(query_one(TASK_SELECT + " WHERE t.id = $1", (task_id,)))


@router.delete("/tasks/{task_id}")
def delete_task(task_id: str, user: Dict[str, Any] = Depends(current_user)):
    _family_row("family_tasks", task_id, user, "Task")
    with with_db_cursor() as (conn, cur):
        cur.execute("DELETE FROM family_tasks WHERE id = $1", (task_id,))
        conn.commit()
    return {"message": "Task deleted"}


# =============================================================================
# Events
# =============================================================================

@router.get("/events")
def list_events(user: Dict[str, Any] = Depends(current_user)):
    rows = query_db("SELECT * FROM family_events WHERE family_id = $1 ORDER BY date ASC", (user["familyId"],))
    return [event_view(e) for e in rows]


@router.post("/events", status_code=201)
def create_event(payload: EventBody, user: Dict[str, Any] = Depends(current_user)):
    if not payload.title or not payload.date:
        raise HTTPException(status_code=400, detail="Title and date are required")
    _check_date(payload.date)

    event_id = new_id("ev")
    with with_db_cursor() as (conn, cur):
        cur.execute(
            """
            INSERT INTO family_events (id, family_id, title, date, type, description, created_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            """,
            (
                event_id, user["familyId"], payload.title, payload.date,
                payload.type or DEFAULT_EVENT_TYPE, payload.description, now_iso(),
            ),
        )
        conn.commit()
    return event_view(query_one("SELECT * FROM family_events WHERE id = $1", (event_id,)))


@router.put("/events/{event_id}")
def update_event(event_id: str, payload: EventBody, user: Dict[str, Any] = Depends(current_user)):
    existing = _family_row("family_events", event_id, user, "Event")
    _check_date(payload.date)

    with with_db_cursor() as (conn, cur):
        cur.execute(
            "UPDATE family_events SET title = $1, date = $2, type = $3, description = $4 WHERE id = $5",
            (
                payload.title or existing["title"],
                payload.date or existing["date"],
                payload.type or existing.get("type") or DEFAULT_EVENT_TYPE,
                payload.description if "description" in payload.model_fields_set else existing.get("description"),
                event_id,
            ),
        )
        conn.commit()
    return event_view(query_one("SELECT * FROM family_events WHERE id = $1", (event_id,)))


@router.delete("/events/{event_id}")
def delete_event(event_id: str, user: Dict[str, Any] = Depends(current_user)):
    _family_row("family_events", event_id, user, "Event")
    with with_db_cursor() as (conn, cur):
        cur.execute("DELETE FROM family_events WHERE id = $1", (event_id,))
        conn.commit()
    return {"message": "Event deleted"}
