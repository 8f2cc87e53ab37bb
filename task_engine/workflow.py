"""Admin and client workflows over the task store.

``TaskWorkflow`` is what the tool surface calls. It turns recoverable
engine errors (rejected transitions, unknown ids, bad field values) into
response dictionaries an admin screen can render, and lets boundary
violations (a plan routed into a task view) propagate after logging them.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from .drafts import TaskDraft
from .engine_logging import (
    log_boundary_violation,
    log_error_with_context,
    log_performance,
    observability_hooks,
)
from .errors import InvalidTransition, NotATask, PartialUpdateError, TaskNotFound
from .milestones import crossed, resolve
from .models import TaskStatus, utc_now
from .progress import Clock, compute_progress
from .store import TaskStore
from .transitions import (
    allowed_transitions,
    is_terminal,
    transition_guide,
    validate_transition,
)
from .visibility import admin_view, filter_for_client

logger = logging.getLogger("task_engine.workflow")


def _transition_error(error: InvalidTransition) -> Dict[str, Any]:
    response = error.to_dict()
    response["allowed_transitions"] = sorted(s.value for s in allowed_transitions(error.current))
    if is_terminal(error.current):
        response["next_suggested_step"] = "reopen_task"
        response["workflow_tip"] = "Terminal tasks can only be reopened, which moves them to ACTIVE"
    else:
        response["next_suggested_step"] = "change_task_status"
        response["workflow_tip"] = "Choose one of the allowed transitions"
    return response


def _not_found(error: TaskNotFound) -> Dict[str, Any]:
    return {"error": str(error), "task_id": error.task_id}


class TaskWorkflow:
    """Orchestrates admin mutations and client reads."""

    def __init__(self, store: TaskStore, clock: Optional[Clock] = None):
        self.store = store
        self.clock = clock or store.clock or utc_now

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_task(self, title: str, client_id: Optional[str] = None, **fields: Any) -> Dict[str, Any]:
        """Create a task directly; it starts PENDING."""
        try:
            task = self.store.create_task(title, client_id=client_id, **fields)
        except ValueError as e:
            return {"error": str(e)}

        return {
            "success": True,
            "task": admin_view(task, self.clock),
            "next_suggested_step": "change_task_status",
            "message": f"Created task {task.id}",
        }

    def create_plan(self, title: str, **fields: Any) -> Dict[str, Any]:
        try:
            plan = self.store.create_plan(title, **fields)
        except ValueError as e:
            return {"error": str(e)}

        return {"success": True, "plan": plan.to_dict(), "message": f"Created plan {plan.id}"}

    def purchase_plan(self, plan_id: str, client_id: str, quantity: Optional[float] = None) -> Dict[str, Any]:
        """Record a client's plan purchase as a task awaiting approval."""
        try:
            task = self.store.purchase_plan(plan_id, client_id, quantity=quantity)
        except TaskNotFound as e:
            return _not_found(e)
        except ValueError as e:
            return {"error": str(e)}

        observability_hooks.log_task_event("plan_purchased", task.id, plan_id=plan_id, client_id=client_id)
        return {
            "success": True,
            "task": filter_for_client(task, clock=self.clock),
            "message": f"Plan purchased; task {task.id} is awaiting admin approval",
        }

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def approve_task(self, task_id: str) -> Dict[str, Any]:
        try:
            task = self.store.approve(task_id)
        except TaskNotFound as e:
            return _not_found(e)
        except InvalidTransition as e:
            response = e.to_dict()
            response["workflow_tip"] = "Only tasks awaiting approval can be approved"
            return response
        except NotATask as e:
            log_boundary_violation(e, "approve_task", task_id=task_id)
            raise

        return {
            "success": True,
            "task": admin_view(task, self.clock),
            "next_suggested_step": "change_task_status",
            "message": f"Task {task_id} approved and scheduled",
        }

    @log_performance("change_status")
    def change_status(self, task_id: str, status: str) -> Dict[str, Any]:
        """Validate and apply a status change."""
        try:
            task, changed = self.store.change_status(task_id, status)
        except TaskNotFound as e:
            return _not_found(e)
        except InvalidTransition as e:
            logger.info(f"Rejected transition for {task_id}: {e}")
            return _transition_error(e)
        except NotATask as e:
            log_boundary_violation(e, "change_status", task_id=task_id)
            raise
        except ValueError as e:
            return {"error": str(e)}

        return {
            "success": True,
            "changed": changed,
            "task": admin_view(task, self.clock),
            "message": (
                f"Task {task_id} moved to {task.status.value}" if changed
                else f"Task {task_id} already {task.status.value}"
            ),
        }

    def reopen_task(self, task_id: str) -> Dict[str, Any]:
        """Bring a completed or cancelled task back to ACTIVE."""
        try:
            task = self.store.reopen(task_id)
        except TaskNotFound as e:
            return _not_found(e)
        except InvalidTransition as e:
            response = e.to_dict()
            response["workflow_tip"] = "Only COMPLETED or CANCELLED tasks can be reopened"
            return response
        except NotATask as e:
            log_boundary_violation(e, "reopen_task", task_id=task_id)
            raise

        return {
            "success": True,
            "task": admin_view(task, self.clock),
            "message": f"Task {task_id} reopened",
        }

    def set_progress_mode(self, task_id: str, mode: str) -> Dict[str, Any]:
        try:
            task = self.store.set_progress_mode(task_id, mode)
        except TaskNotFound as e:
            return _not_found(e)
        except NotATask as e:
            log_boundary_violation(e, "set_progress_mode", task_id=task_id)
            raise
        except ValueError as e:
            return {"error": str(e), "task_id": task_id}

        return {
            "success": True,
            "task_id": task_id,
            "progress_mode": task.progress_mode.value,
            "message": f"Task {task_id} now uses {task.progress_mode.value} progress",
        }

    # ------------------------------------------------------------------
    # Combined admin edit
    # ------------------------------------------------------------------

    @log_performance("save_admin_edit")
    def save_admin_edit(self, task_id: str, changes: Mapping[str, Any]) -> Dict[str, Any]:
        """Save an admin draft: a field patch plus an optional status change.

        Everything is validated before the first write. The two writes are
        then committed in order; if the second fails after the first
        succeeded the response reports ``outcome: partial`` together with
        the freshly re-read task instead of the caller's local copy.
        """
        try:
            original = self.store.get_task(task_id)
            draft = TaskDraft(original).update(changes)
            patch = draft.field_patch()
            requested = draft.requested_status
        except TaskNotFound as e:
            return _not_found(e)
        except NotATask as e:
            log_boundary_violation(e, "save_admin_edit", task_id=task_id)
            raise
        except ValueError as e:
            return {"outcome": "rejected", "error": str(e)}

        if not patch and requested is None:
            return {
                "outcome": "unchanged",
                "task": admin_view(original, self.clock),
                "message": "No changes to save",
            }

        if requested is not None:
            try:
                validate_transition(original.status, requested)
            except InvalidTransition as e:
                response = _transition_error(e)
                response["outcome"] = "rejected"
                return response

        previous_progress = compute_progress(original, self.clock)
        try:
            self._commit_edit(task_id, patch, requested)
        except PartialUpdateError as e:
            log_error_with_context(e.cause, {
                "operation": "save_admin_edit",
                "task_id": task_id,
                "applied": e.applied,
                "failed": e.failed,
            })
            return {
                "outcome": "partial",
                "error": str(e),
                "applied": e.applied,
                "failed": e.failed,
                "task": admin_view(self.store.get_task(task_id), self.clock),
                "workflow_tip": "Review the reloaded task before retrying the failed part",
            }
        except ValueError as e:
            return {"outcome": "rejected", "error": str(e)}

        task = self.store.get_task(task_id)
        current_progress = compute_progress(task, self.clock)
        return {
            "outcome": "applied",
            "changed_fields": draft.changed_fields(),
            "milestones_crossed": [
                m.to_dict() for m in crossed(task.milestones, previous_progress, current_progress)
            ],
            "task": admin_view(task, self.clock),
            "message": f"Task {task_id} updated",
        }

    def _commit_edit(self, task_id: str, patch: Dict[str, Any], requested: Optional[TaskStatus]) -> None:
        if patch:
            self.store.patch_fields(task_id, patch)
        if requested is None:
            return
        try:
            self.store.change_status(task_id, requested)
        except Exception as e:
            if not patch:
                raise
            raise PartialUpdateError(task_id, "field update", "status change", e) from e

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def admin_task_view(self, task_id: str) -> Dict[str, Any]:
        try:
            task = self.store.get_task(task_id)
        except TaskNotFound as e:
            return _not_found(e)
        except NotATask as e:
            log_boundary_violation(e, "admin_task_view", task_id=task_id)
            raise

        view = admin_view(task, self.clock)
        view["allowed_transitions"] = sorted(s.value for s in allowed_transitions(task.status))
        view["can_reopen"] = is_terminal(task.status)
        return {"task": view}

    def client_task_view(self, task_id: str, client_id: Optional[str] = None) -> Dict[str, Any]:
        """Client detail view; another client's task reads as not found."""
        try:
            task = self.store.get_task(task_id)
        except TaskNotFound as e:
            return _not_found(e)
        except NotATask as e:
            log_boundary_violation(e, "client_task_view", task_id=task_id)
            raise

        if client_id is not None and task.client_id != client_id:
            return {"error": f"Task '{task_id}' not found", "task_id": task_id}
        return {"task": filter_for_client(task, clock=self.clock)}

    def client_task_list(self, client_id: str) -> Dict[str, Any]:
        tasks = [filter_for_client(t, clock=self.clock) for t in self.store.list_tasks(client_id=client_id)]
        return {"client_id": client_id, "tasks": tasks, "count": len(tasks)}

    def progress_summary(self, task_id: str) -> Dict[str, Any]:
        """Effective progress and milestone position for one task."""
        try:
            task = self.store.get_task(task_id)
        except TaskNotFound as e:
            return _not_found(e)
        except NotATask as e:
            log_boundary_violation(e, "progress_summary", task_id=task_id)
            raise

        progress = compute_progress(task, self.clock)
        return {
            "task_id": task_id,
            "progress": progress,
            "progress_mode": task.progress_mode.value,
            "override": task.progress is not None,
            "milestones": resolve(task.milestones, progress).to_dict(),
        }

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def audit_tasks(self) -> Dict[str, Any]:
        """Check every stored task for invalid data."""
        problems: List[Dict[str, Any]] = []
        tasks = self.store.list_tasks()
        for task in tasks:
            issues = task.validate()
            if issues:
                problems.append({"task_id": task.id, "issues": issues})

        if problems:
            logger.warning(f"Task audit found issues in {len(problems)} of {len(tasks)} tasks")
        return {
            "checked": len(tasks),
            "plans_skipped": len(self.store.list_plans()),
            "problems": problems,
            "healthy": not problems,
        }

    @staticmethod
    def status_guide() -> Dict[str, Any]:
        return transition_guide()
