"""MCP server exposing task lifecycle, progress and client visibility tools."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from task_engine.engine_logging import setup_logging
from task_engine.milestones import resolve
from task_engine.models import STATUS_LABELS, ProgressMode, Task
from task_engine.progress import compute_progress, display_progress
from task_engine.store import TaskStore
from task_engine.workflow import TaskWorkflow

mcp = FastMCP("task-engine")


def _workflow(data_dir: Optional[str] = None) -> TaskWorkflow:
    return TaskWorkflow(TaskStore(data_dir))


def _task_fields(**fields: Any) -> Dict[str, Any]:
    return {name: value for name, value in fields.items() if value is not None}


@mcp.tool()
def create_task(
    title: str,
    client_id: Optional[str] = None,
    description: Optional[str] = None,
    progress_mode: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    progress_target: Optional[float] = None,
    quantity: Optional[float] = None,
    credit_cost: Optional[float] = None,
    milestones: Optional[List[Dict[str, Any]]] = None,
    data_dir: Optional[str] = None,
) -> Dict[str, Any]:
    """Create a task directly for a client. New tasks start PENDING with the default milestones
    unless a milestone list is given."""

    fields = _task_fields(
        description=description,
        progress_mode=progress_mode,
        start_date=start_date,
        end_date=end_date,
        progress_target=progress_target,
        quantity=quantity,
        credit_cost=credit_cost,
    )
    return _workflow(data_dir).create_task(title, client_id=client_id, milestones=milestones, **fields)


@mcp.tool()
def create_plan(
    title: str,
    description: Optional[str] = None,
    offer_price: Optional[float] = None,
    original_price: Optional[float] = None,
    quantity: Optional[float] = None,
    credit_cost: Optional[float] = None,
    milestones: Optional[List[Dict[str, Any]]] = None,
    data_dir: Optional[str] = None,
) -> Dict[str, Any]:
    """Create a plan listing that clients can purchase. Plans have no lifecycle status."""

    fields = _task_fields(
        description=description,
        offer_price=offer_price,
        original_price=original_price,
        quantity=quantity,
        credit_cost=credit_cost,
    )
    if milestones is not None:
        fields["milestones"] = milestones
    return _workflow(data_dir).create_plan(title, **fields)


@mcp.tool()
def purchase_plan(
    plan_id: str,
    client_id: str,
    quantity: Optional[float] = None,
    data_dir: Optional[str] = None,
) -> Dict[str, Any]:
    """Purchase a plan for a client. The resulting task waits in PENDING_APPROVAL until approve_task."""

    return _workflow(data_dir).purchase_plan(plan_id, client_id, quantity=quantity)


@mcp.tool()
def approve_task(task_id: str, data_dir: Optional[str] = None) -> Dict[str, Any]:
    """Approve a purchased task, moving it from PENDING_APPROVAL to PENDING."""

    return _workflow(data_dir).approve_task(task_id)


@mcp.tool()
def change_task_status(task_id: str, status: str, data_dir: Optional[str] = None) -> Dict[str, Any]:
    """Move a task to a new status. Allowed: PENDING -> ACTIVE|CANCELLED, ACTIVE -> COMPLETED|CANCELLED.
    Rejected changes return an error with the allowed transitions."""

    return _workflow(data_dir).change_status(task_id, status)


@mcp.tool()
def reopen_task(task_id: str, data_dir: Optional[str] = None) -> Dict[str, Any]:
    """Reopen a COMPLETED or CANCELLED task; it becomes ACTIVE again."""

    return _workflow(data_dir).reopen_task(task_id)


@mcp.tool()
def update_task(task_id: str, changes: Dict[str, Any], data_dir: Optional[str] = None) -> Dict[str, Any]:
    """Save an admin edit: any editable fields plus an optional 'status'.
    The status change is validated before anything is written."""

    return _workflow(data_dir).save_admin_edit(task_id, changes)


@mcp.tool()
def set_progress_mode(task_id: str, mode: str, data_dir: Optional[str] = None) -> Dict[str, Any]:
    """Switch a task between AUTO (date-based) and MANUAL (achieved/target) progress.
    Refused once any milestone has been reached."""

    return _workflow(data_dir).set_progress_mode(task_id, mode)


@mcp.tool()
def get_admin_task(task_id: str, data_dir: Optional[str] = None) -> Dict[str, Any]:
    """Full task record with derived progress, milestones and allowed transitions."""

    return _workflow(data_dir).admin_task_view(task_id)


@mcp.tool()
def get_client_task(task_id: str, client_id: Optional[str] = None, data_dir: Optional[str] = None) -> Dict[str, Any]:
    """Client-facing view of a task, filtered by the task's visibility flags."""

    return _workflow(data_dir).client_task_view(task_id, client_id=client_id)


@mcp.tool()
def list_client_tasks(client_id: str, data_dir: Optional[str] = None) -> Dict[str, Any]:
    """Client-facing views of every task owned by a client."""

    return _workflow(data_dir).client_task_list(client_id)


@mcp.tool()
def compute_task_progress(
    progress_mode: str = "AUTO",
    progress: Optional[float] = None,
    progress_target: Optional[float] = None,
    progress_achieved: Optional[float] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    milestones: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """Preview effective progress for unsaved values without touching any stored task."""

    task = Task.from_dict({
        "id": "preview",
        "title": "preview",
        "progress_mode": progress_mode,
        "progress": progress,
        "progress_target": progress_target,
        "progress_achieved": progress_achieved,
        "start_date": start_date,
        "end_date": end_date,
        "milestones": milestones or [],
    })
    value = compute_progress(task)
    result = {
        "progress": value,
        "progress_display": display_progress(value),
        "progress_mode": task.progress_mode.value,
        "override": task.progress is not None,
    }
    if milestones:
        result["milestones"] = resolve(task.milestones, value).to_dict()
    return result


@mcp.tool()
def resolve_task_milestones(task_id: str, data_dir: Optional[str] = None) -> Dict[str, Any]:
    """Return the active and next milestone for a task's current progress."""

    return _workflow(data_dir).progress_summary(task_id)


@mcp.tool()
def audit_tasks(data_dir: Optional[str] = None) -> Dict[str, Any]:
    """Check every stored task for invalid data such as negative amounts or inverted date windows."""

    return _workflow(data_dir).audit_tasks()


@mcp.tool()
def get_status_guide() -> Dict[str, Any]:
    """Get guidance on the task lifecycle and how progress is computed."""
    guide = TaskWorkflow.status_guide()
    guide["labels"] = {status.value: label for status, label in STATUS_LABELS.items()}
    guide["progress_modes"] = {
        ProgressMode.AUTO.value: "Elapsed share of the start/end date window; keeps rising past 100 when overdue",
        ProgressMode.MANUAL.value: "progress_achieved / progress_target; 0 without a positive target",
    }
    guide["tips"] = [
        "An explicit 'progress' value overrides both modes",
        "Purchased plans must be approved before they can be scheduled",
        "Completed and cancelled tasks can only be revived with reopen_task",
        "Reached milestones keep their timestamp even if progress later drops",
    ]
    return guide


@mcp.resource("task-engine://tasks")
def resource_tasks():
    """Resource view listing stored tasks with their status and progress."""

    store = TaskStore()
    tasks = store.list_tasks()
    if not tasks:
        return "No tasks have been created yet."

    lines = ["Tasks"]
    for task in tasks:
        progress = display_progress(compute_progress(task, store.clock))
        lines.append("")
        lines.append(f"- {task.id}: {task.title}")
        lines.append(f"  Status: {task.status.value} ({STATUS_LABELS[task.status]})")
        lines.append(f"  Progress: {progress}%")
        if task.client_id:
            lines.append(f"  Client: {task.client_id}")

    return "\n".join(lines)


def _configure_logging() -> None:
    log_file = os.getenv("TASK_ENGINE_LOG_FILE")
    setup_logging(
        os.getenv("TASK_ENGINE_LOG_LEVEL", "INFO").upper(),
        Path(log_file).expanduser() if log_file else None,
    )


if __name__ == "__main__":
    _configure_logging()
    mcp.run(transport="stdio")
