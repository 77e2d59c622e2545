"""
Plain-data views of orders returned by the workflow service.
"""
from typing import Any, Dict, List

from ...models.db_models import FilePhase, OrderDB, OrderFileDB


# Response key per file phase; original uploads keep their full history
PHASE_KEYS = {
    FilePhase.STUDENT_ORIGINAL: "original_files",
    FilePhase.WORKER_DRAFT: "draft_files",
    FilePhase.SUPER_WORKER_REVIEW: "review_files",
    FilePhase.FINAL_APPROVED: "final_files",
}


def _iso(moment):
    return moment.isoformat() if moment else None


def serialize_file(row: OrderFileDB) -> Dict[str, Any]:
    return {
        "id": row.id,
        "name": row.file_name,
        "locator": row.locator,
        "phase": row.phase.value,
        "is_latest": bool(row.is_latest),
        "uploaded_by": row.uploaded_by,
        "uploaded_at": _iso(row.uploaded_at),
    }


def serialize_files(files: List[OrderFileDB]) -> Dict[str, List[Dict[str, Any]]]:
    grouped = {key: [] for key in PHASE_KEYS.values()}
    for row in files:
        if row.phase != FilePhase.STUDENT_ORIGINAL and not row.is_latest:
            continue
        grouped[PHASE_KEYS[row.phase]].append(serialize_file(row))
    return grouped


def serialize_change_request(row) -> Dict[str, Any]:
    return {
        "id": row.id,
        "kind": row.kind.value,
        "notes": row.notes,
        "proposed_word_count": row.proposed_word_count,
        "proposed_deadline": _iso(row.proposed_deadline),
        "created_by": row.created_by,
        "created_at": _iso(row.created_at),
        "files": [{"name": f.file_name, "locator": f.locator} for f in row.files],
    }


def serialize_order(order: OrderDB) -> Dict[str, Any]:
    data = {
        "id": order.id,
        "student_id": order.student_id,
        "agent_id": order.agent_id,
        "worker_id": order.worker_id,
        "super_worker_id": order.super_worker_id,
        "status": order.status.value,
        "module_name": order.module_name,
        "project_numbers": list(order.project_numbers or []),
        "word_count": order.word_count,
        "deadline": _iso(order.deadline),
        "notes": order.notes,
        "price": order.price,
        "earnings": dict(order.earnings or {}),
        "version": order.version,
        "created_at": _iso(order.created_at),
        "updated_at": _iso(order.updated_at),
        "change_requests": [serialize_change_request(cr) for cr in order.change_requests],
    }
    data.update(serialize_files(order.files))
    return data
