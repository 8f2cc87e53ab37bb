"""Unit tests for task workflow orchestration.

This module tests the admin and client workflows: status changes and their
error responses, the combined admin edit, and the client read paths.
"""

import pytest
from datetime import timedelta
from unittest.mock import patch

from task_engine.errors import NotATask
from task_engine.models import TaskStatus
from task_engine.store import TaskStore
from task_engine.workflow import TaskWorkflow


@pytest.fixture
def active_task(store):
    task = store.create_task("Logo design", client_id="client-1", credit_cost=10)
    store.change_status(task.id, "ACTIVE")
    return store.get_task(task.id)


class TestWorkflowInitialization:
    """Test cases for TaskWorkflow initialization."""

    def test_uses_store_clock_by_default(self, store, clock):
        workflow = TaskWorkflow(store)
        assert workflow.clock is clock


class TestCreation:
    """Test cases for create and purchase responses."""

    def test_create_task(self, workflow):
        result = workflow.create_task("Logo design", client_id="client-1")

        assert result["success"] is True
        assert result["task"]["status"] == "PENDING"
        assert result["next_suggested_step"] == "change_task_status"
        assert "Created task" in result["message"]

    def test_create_task_error(self, workflow):
        result = workflow.create_task("")
        assert result["error"] == "Title cannot be empty"

    def test_create_task_with_incomplete_milestone(self, workflow, store):
        result = workflow.create_task("Logo design", milestones=[{"percentage": 10}])

        assert "Milestone requires name and percentage" in result["error"]
        assert store.list_tasks() == []

    def test_create_plan(self, workflow):
        result = workflow.create_plan("Starter pack", offer_price=49)
        assert result["plan"]["is_listed_in_plans"] is True
        assert result["plan"]["status"] is None

    def test_purchase_plan_returns_client_view(self, workflow):
        plan_id = workflow.create_plan("Starter pack", internal_notes="secret")["plan"]["id"]

        result = workflow.purchase_plan(plan_id, "client-1")

        assert result["task"]["status"] == "PENDING_APPROVAL"
        assert result["task"]["status_label"] == "Pending Admin Approval"
        assert "internal_notes" not in result["task"]

    def test_purchase_unknown_plan(self, workflow):
        result = workflow.purchase_plan("PLAN-MISSING", "client-1")
        assert result["error"] == "Task 'PLAN-MISSING' not found"


class TestChangeStatus:
    """Test cases for change_status."""

    def test_allowed_change(self, workflow, active_task):
        result = workflow.change_status(active_task.id, "COMPLETED")

        assert result["success"] is True
        assert result["changed"] is True
        assert result["task"]["status"] == "COMPLETED"

    def test_same_status(self, workflow, active_task):
        result = workflow.change_status(active_task.id, "ACTIVE")
        assert result["changed"] is False
        assert "already ACTIVE" in result["message"]

    def test_rejected_change(self, workflow, store, active_task):
        """Test the error response for a move back to PENDING."""
        result = workflow.change_status(active_task.id, "PENDING")

        assert result["error"] == "Cannot change from ACTIVE to PENDING"
        assert result["current_status"] == "ACTIVE"
        assert result["requested_status"] == "PENDING"
        assert result["allowed_transitions"] == ["CANCELLED", "COMPLETED"]
        assert store.get_task(active_task.id).status == TaskStatus.ACTIVE

    def test_rejected_change_from_terminal_suggests_reopen(self, workflow, active_task):
        workflow.change_status(active_task.id, "COMPLETED")

        result = workflow.change_status(active_task.id, "ACTIVE")

        assert result["allowed_transitions"] == []
        assert result["next_suggested_step"] == "reopen_task"

    def test_unknown_status(self, workflow, active_task):
        result = workflow.change_status(active_task.id, "DONE")
        assert "Invalid status" in result["error"]

    def test_unknown_task(self, workflow):
        assert workflow.change_status("TASK-MISSING", "ACTIVE")["task_id"] == "TASK-MISSING"

    def test_plan_is_a_boundary_violation(self, workflow):
        """Test that a plan routed into a task path is logged and raised."""
        plan_id = workflow.create_plan("Starter pack")["plan"]["id"]

        with patch("task_engine.workflow.log_boundary_violation") as mock_log:
            with pytest.raises(NotATask):
                workflow.change_status(plan_id, "ACTIVE")

        mock_log.assert_called_once()
        assert mock_log.call_args[0][1] == "change_status"


class TestApproveAndReopen:
    """Test cases for approve_task and reopen_task."""

    def test_approve(self, workflow):
        plan_id = workflow.create_plan("Starter pack")["plan"]["id"]
        task_id = workflow.purchase_plan(plan_id, "client-1")["task"]["id"]

        result = workflow.approve_task(task_id)

        assert result["task"]["status"] == "PENDING"
        assert result["next_suggested_step"] == "change_task_status"

    def test_approve_twice(self, workflow):
        plan_id = workflow.create_plan("Starter pack")["plan"]["id"]
        task_id = workflow.purchase_plan(plan_id, "client-1")["task"]["id"]
        workflow.approve_task(task_id)

        result = workflow.approve_task(task_id)

        assert result["error"] == "Cannot change from PENDING to PENDING"
        assert "awaiting approval" in result["workflow_tip"]

    def test_reopen(self, workflow, active_task):
        workflow.change_status(active_task.id, "CANCELLED")
        assert workflow.reopen_task(active_task.id)["task"]["status"] == "ACTIVE"

    def test_reopen_active(self, workflow, active_task):
        result = workflow.reopen_task(active_task.id)
        assert result["error"] == "Cannot change from ACTIVE to ACTIVE"
        assert result["current_status"] == "ACTIVE"


class TestSaveAdminEdit:
    """Test cases for the combined admin edit."""

    def test_unchanged(self, workflow, active_task):
        result = workflow.save_admin_edit(active_task.id, {"title": "Logo design", "status": "ACTIVE"})
        assert result["outcome"] == "unchanged"

    def test_fields_and_status(self, workflow, store, active_task):
        result = workflow.save_admin_edit(
            active_task.id, {"progress": 100, "public_notes": "Done", "status": "COMPLETED"}
        )

        assert result["outcome"] == "applied"
        assert result["changed_fields"] == ["progress", "public_notes", "status"]
        stored = store.get_task(active_task.id)
        assert stored.status == TaskStatus.COMPLETED
        assert stored.progress == 100
        assert stored.public_notes == "Done"

    def test_reports_milestones_crossed(self, workflow, active_task):
        result = workflow.save_admin_edit(active_task.id, {"progress": 65})
        names = [m["name"] for m in result["milestones_crossed"]]
        assert names == ["Work Started", "First Draft", "Review Phase"]

    def test_invalid_transition_writes_nothing(self, workflow, store, active_task):
        """Test that the transition is checked before the field write."""
        result = workflow.save_admin_edit(active_task.id, {"title": "Renamed", "status": "PENDING"})

        assert result["outcome"] == "rejected"
        assert result["error"] == "Cannot change from ACTIVE to PENDING"
        assert store.get_task(active_task.id).title == "Logo design"

    def test_invalid_field_value_writes_nothing(self, workflow, store, active_task):
        result = workflow.save_admin_edit(active_task.id, {"credit_cost": -3, "status": "COMPLETED"})

        assert result["outcome"] == "rejected"
        stored = store.get_task(active_task.id)
        assert stored.credit_cost == 10
        assert stored.status == TaskStatus.ACTIVE

    def test_visibility_flag_from_string(self, workflow, store, active_task):
        """Test that the string "false" hides a field instead of showing it."""
        workflow.save_admin_edit(active_task.id, {"quantity": 3, "show_quantity_to_client": "true"})

        result = workflow.save_admin_edit(active_task.id, {"show_quantity_to_client": "false"})

        assert result["outcome"] == "applied"
        assert store.get_task(active_task.id).show_quantity_to_client is False
        client = workflow.client_task_view(active_task.id, client_id="client-1")["task"]
        assert "quantity" not in client

    def test_ambiguous_visibility_flag_is_rejected(self, workflow, store, active_task):
        result = workflow.save_admin_edit(
            active_task.id, {"show_credits_to_client": "sometimes", "status": "COMPLETED"}
        )

        assert result["outcome"] == "rejected"
        assert "Expected true or false" in result["error"]
        stored = store.get_task(active_task.id)
        assert stored.show_credits_to_client is None
        assert stored.status == TaskStatus.ACTIVE

    def test_incomplete_milestone_is_rejected(self, workflow, store, active_task):
        result = workflow.save_admin_edit(active_task.id, {"milestones": [{"percentage": 10}]})

        assert result["outcome"] == "rejected"
        assert "Milestone requires name and percentage" in result["error"]
        assert len(store.get_task(active_task.id).milestones) == 6

    def test_non_editable_field(self, workflow, active_task):
        result = workflow.save_admin_edit(active_task.id, {"client_id": "client-2"})
        assert result["outcome"] == "rejected"
        assert "not editable" in result["error"]

    def test_partial_failure_returns_authoritative_task(self, workflow, store, active_task):
        """Test the outcome when the status write fails after the field write."""
        with patch.object(store, "change_status", side_effect=OSError("disk full")):
            result = workflow.save_admin_edit(active_task.id, {"title": "Renamed", "status": "COMPLETED"})

        assert result["outcome"] == "partial"
        assert result["applied"] == "field update"
        assert result["failed"] == "status change"
        assert "disk full" in result["error"]
        assert result["task"]["title"] == "Renamed"
        assert result["task"]["status"] == "ACTIVE"

    def test_status_only_failure_propagates(self, workflow, store, active_task):
        with patch.object(store, "change_status", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                workflow.save_admin_edit(active_task.id, {"status": "COMPLETED"})


class TestReads:
    """Test cases for admin and client reads."""

    def test_admin_task_view(self, workflow, active_task):
        task = workflow.admin_task_view(active_task.id)["task"]

        assert task["allowed_transitions"] == ["CANCELLED", "COMPLETED"]
        assert task["can_reopen"] is False
        assert "derived" in task

    def test_client_task_view(self, workflow, active_task):
        task = workflow.client_task_view(active_task.id, client_id="client-1")["task"]
        assert task["credit_cost"] == 10
        assert "internal_notes" not in task

    def test_client_cannot_see_another_clients_task(self, workflow, active_task):
        result = workflow.client_task_view(active_task.id, client_id="client-2")
        assert "not found" in result["error"]

    def test_client_task_list(self, workflow, store, clock, active_task):
        clock.now += timedelta(minutes=1)
        store.create_task("Banner", client_id="client-1")
        store.create_task("Other client", client_id="client-2")

        result = workflow.client_task_list("client-1")

        assert result["count"] == 2
        assert [t["title"] for t in result["tasks"]] == ["Logo design", "Banner"]

    def test_progress_summary(self, workflow, active_task):
        workflow.save_admin_edit(active_task.id, {"progress": 85})

        summary = workflow.progress_summary(active_task.id)

        assert summary["progress"] == 85
        assert summary["override"] is True
        assert summary["milestones"]["active"]["name"] == "Almost Ready"
        assert summary["milestones"]["next"]["name"] == "Delivered"

    def test_set_progress_mode_refused_after_stamp(self, workflow, active_task):
        workflow.save_admin_edit(active_task.id, {"progress": 15})
        result = workflow.set_progress_mode(active_task.id, "MANUAL")
        assert "reached milestones" in result["error"]


class TestAudit:
    """Test cases for audit_tasks."""

    def test_healthy(self, workflow, active_task):
        workflow.create_plan("Starter pack")

        report = workflow.audit_tasks()

        assert report["healthy"] is True
        assert report["checked"] == 1
        assert report["plans_skipped"] == 1

    def test_reports_bad_records(self, workflow, store, active_task):
        broken = active_task.copy(credits_used=-2)
        store._write(broken)

        report = workflow.audit_tasks()

        assert report["healthy"] is False
        assert report["problems"][0]["task_id"] == active_task.id
        assert "credits_used" in report["problems"][0]["issues"][0]
