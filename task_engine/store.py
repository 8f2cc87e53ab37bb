"""JSON-file task store.

The store is the collaborator the engine is written against: it hands out
task snapshots and accepts two kinds of writes, a field patch and a status
change, mirroring the admin panel's two-call save. Every write validates
first and commits second; nothing is written when validation fails.

Plans live in the same document as tasks (``is_listed_in_plans``) and are
rejected by every task-only entry point.
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .drafts import EDITABLE_FIELDS
from .engine_logging import (
    log_milestone_reached,
    log_operation,
    log_progress_update,
    log_status_change,
)
from .errors import InvalidTransition, TaskNotFound
from .milestones import stamp_reached
from .models import (
    Milestone,
    ProgressMode,
    Task,
    TaskStatus,
    default_milestones,
    format_timestamp,
    parse_status,
    require_task,
    utc_now,
)
from .progress import Clock, compute_progress
from .transitions import reopen as reopen_status, validate_transition

logger = logging.getLogger("task_engine.store")

DEFAULT_DATA_DIR = ".task-engine"

# Fields accepted when creating a task or plan, beyond title and client.
CREATE_FIELDS = frozenset(EDITABLE_FIELDS) | {"progress_mode", "credits_used"}


def _generate_id(prefix: str) -> str:
    """Generate a unique record ID."""
    return f"{prefix}-{uuid.uuid4().hex[:8].upper()}"


def _serialize_patch(patch: Mapping[str, Any]) -> Dict[str, Any]:
    serialized: Dict[str, Any] = {}
    for name, value in patch.items():
        if name == "milestones" and value is not None:
            value = [(m if isinstance(m, Milestone) else Milestone.from_dict(m)).to_dict() for m in value]
        elif name in ("status", "progress_mode") and value is not None:
            value = getattr(value, "value", value)
        serialized[name] = value
    return serialized


def _check_create_fields(fields: Mapping[str, Any]) -> None:
    unknown = sorted(set(fields) - CREATE_FIELDS)
    if unknown:
        raise ValueError(f"Unknown task fields: {', '.join(unknown)}")


class TaskStore:
    """Persist tasks and plans as a single JSON document."""

    DATA_DIR_ENV = "TASK_ENGINE_DATA_DIR"

    def __init__(self, data_dir: Optional[Path | str] = None, clock: Clock = utc_now):
        if data_dir is None:
            data_dir = os.getenv(self.DATA_DIR_ENV) or DEFAULT_DATA_DIR
        self.data_dir = Path(data_dir).expanduser().resolve()
        self.tasks_path = self.data_dir / "tasks.json"
        self.clock = clock

        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create data directory: {e}")
            raise RuntimeError(f"Could not initialize task store at {self.data_dir}: {e}")

        logger.info(f"Task store initialized at {self.data_dir}")

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> List[Task]:
        if not self.tasks_path.exists():
            return []
        data = json.loads(self.tasks_path.read_text(encoding="utf-8"))
        return [Task.from_dict(item) for item in data]

    def _save(self, records: Iterable[Task]) -> None:
        tmp_path = self.tasks_path.with_suffix(".json.tmp")
        tmp_path.write_text(
            json.dumps([record.to_dict() for record in records], indent=2),
            encoding="utf-8",
        )
        tmp_path.replace(self.tasks_path)

    def _write(self, record: Task) -> Task:
        records = self._load()
        for i, existing in enumerate(records):
            if existing.id == record.id:
                records[i] = record
                break
        else:
            records.append(record)
        self._save(records)
        return record

    def _now(self) -> str:
        return format_timestamp(self.clock())

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, record_id: str) -> Task:
        """Return the task or plan with ``record_id``."""
        for record in self._load():
            if record.id == record_id:
                return record
        raise TaskNotFound(record_id)

    def get_task(self, task_id: str) -> Task:
        """Return the task with ``task_id``; plans raise NotATask."""
        return require_task(self.get(task_id), "get_task")

    def list_tasks(
        self,
        client_id: Optional[str] = None,
        status: Optional[TaskStatus | str] = None,
        include_plans: bool = False,
    ) -> List[Task]:
        """List tasks with optional filtering, oldest first."""
        wanted_status = parse_status(status) if status is not None else None
        results = []
        for record in self._load():
            if record.is_plan and not include_plans:
                continue
            if client_id is not None and record.client_id != client_id:
                continue
            if wanted_status is not None and (record.is_plan or record.status != wanted_status):
                continue
            results.append(record)
        results.sort(key=lambda r: r.created_at)
        return results

    def list_plans(self) -> List[Task]:
        return [record for record in self._load() if record.is_plan]

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_task(
        self,
        title: str,
        client_id: Optional[str] = None,
        milestones: Optional[List[Milestone]] = None,
        **fields: Any,
    ) -> Task:
        """Create a task directly from the admin panel; it starts PENDING."""
        if not title or not title.strip():
            raise ValueError("Title cannot be empty")

        _check_create_fields(fields)
        now = self._now()
        data = {
            **_serialize_patch(fields),
            "id": _generate_id("TASK"),
            "title": title.strip(),
            "client_id": client_id,
            "status": TaskStatus.PENDING.value,
            "created_at": now,
            "updated_at": now,
            "milestones": _serialize_patch(
                {"milestones": milestones if milestones is not None else default_milestones()}
            )["milestones"],
        }
        task = Task.from_dict(data)
        issues = task.validate()
        if issues:
            raise ValueError(f"Invalid task: {'; '.join(issues)}")

        with log_operation("create_task", task_id=task.id, client_id=client_id):
            self._write(task)
        return task

    def create_plan(self, title: str, **fields: Any) -> Task:
        """Create a plan listing; plans never carry a lifecycle status."""
        if not title or not title.strip():
            raise ValueError("Title cannot be empty")

        _check_create_fields(fields)
        now = self._now()
        plan = Task.from_dict({
            **_serialize_patch(fields),
            "id": _generate_id("PLAN"),
            "title": title.strip(),
            "created_at": now,
            "updated_at": now,
            "is_listed_in_plans": True,
        })
        issues = plan.validate()
        if issues:
            raise ValueError(f"Invalid plan: {'; '.join(issues)}")

        with log_operation("create_plan", plan_id=plan.id):
            self._write(plan)
        return plan

    def purchase_plan(self, plan_id: str, client_id: str, quantity: Optional[float] = None) -> Task:
        """Turn a plan purchase into a task awaiting admin approval."""
        plan = self.get(plan_id)
        if not plan.is_plan:
            raise ValueError(f"Record '{plan_id}' is not a plan")
        if not client_id:
            raise ValueError("client_id is required to purchase a plan")

        now = self._now()
        task = plan.copy(
            id=_generate_id("TASK"),
            client_id=client_id,
            status=TaskStatus.PENDING_APPROVAL,
            is_listed_in_plans=False,
            plan_id=plan.id,
            internal_notes="",
            progress=None,
            progress_achieved=None,
            milestones=[
                Milestone(m.name, m.percentage, m.color)
                for m in (plan.milestones or default_milestones())
            ],
            created_at=now,
            updated_at=now,
        )
        if quantity is not None:
            task.quantity = float(quantity)

        with log_operation("purchase_plan", plan_id=plan_id, task_id=task.id, client_id=client_id):
            self._write(task)
        return task

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def approve(self, task_id: str) -> Task:
        """Release a purchased task from PENDING_APPROVAL into PENDING."""
        task = self.get_task(task_id)
        if task.status != TaskStatus.PENDING_APPROVAL:
            raise InvalidTransition(task.status, TaskStatus.PENDING)

        previous = task.status
        task.status = TaskStatus.PENDING
        task.updated_at = self._now()
        self._write(task)
        log_status_change(task.id, previous.value, task.status.value, action="approve")
        return task

    def patch_fields(self, task_id: str, patch: Mapping[str, Any]) -> Task:
        """Apply a general field patch, stamping milestones newly crossed.

        Raises:
            ValueError: If the patch carries ``status`` or a non-editable
                field, or leaves the task invalid.
        """
        if "status" in patch:
            raise ValueError("status cannot be patched; use change_status")
        unknown = sorted(set(patch) - set(EDITABLE_FIELDS))
        if unknown:
            raise ValueError(f"Fields not editable: {', '.join(unknown)}")

        task = self.get_task(task_id)
        if not patch:
            return task

        now = self.clock()
        previous_progress = compute_progress(task, lambda: now)
        updated = Task.from_dict({**task.to_dict(), **_serialize_patch(patch)})
        issues = updated.validate()
        if issues:
            raise ValueError(f"Invalid task update: {'; '.join(issues)}")

        current_progress = compute_progress(updated, lambda: now)
        newly_reached = [m for m in updated.milestones
                         if m.reached_at is None and m.percentage <= current_progress]
        updated.milestones = stamp_reached(updated.milestones, current_progress, format_timestamp(now))
        updated.updated_at = format_timestamp(now)

        with log_operation("patch_fields", task_id=task_id, fields=sorted(patch)):
            self._write(updated)

        if current_progress != previous_progress:
            log_progress_update(task_id, previous_progress, current_progress)
        for milestone in newly_reached:
            log_milestone_reached(task_id, milestone.name, milestone.percentage)
        return updated

    def change_status(self, task_id: str, status: TaskStatus | str) -> Tuple[Task, bool]:
        """Move a task along the transition table.

        Returns:
            The stored task and whether anything was written; requesting
            the current status writes nothing.
        """
        task = self.get_task(task_id)
        requested = parse_status(status)
        if not validate_transition(task.status, requested):
            return task, False

        previous = task.status
        task.status = requested
        task.updated_at = self._now()
        self._write(task)
        log_status_change(task.id, previous.value, requested.value)
        return task, True

    def reopen(self, task_id: str) -> Task:
        """Revive a completed or cancelled task into ACTIVE."""
        task = self.get_task(task_id)
        previous = task.status
        task.status = reopen_status(task.status)
        task.updated_at = self._now()
        self._write(task)
        log_status_change(task.id, previous.value, task.status.value, action="reopen")
        return task

    def set_progress_mode(self, task_id: str, mode: ProgressMode | str) -> Task:
        """Set the progress mode of a task that has no reached milestones yet.

        Switching modes after milestones were stamped under the old mode has
        no defined meaning, so it is refused.
        """
        task = self.get_task(task_id)
        mode = ProgressMode(getattr(mode, "value", str(mode)).upper())
        if mode == task.progress_mode:
            return task
        if any(m.is_reached for m in task.milestones):
            raise ValueError(
                f"Task '{task_id}' has reached milestones; its progress mode cannot change"
            )
        task.progress_mode = mode
        task.updated_at = self._now()
        self._write(task)
        return task
