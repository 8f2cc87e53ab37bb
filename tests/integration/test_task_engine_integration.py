"""
Integration tests for the task engine MCP server.

These tests drive the tool functions exposed by main.py against a temporary
data directory, the way an MCP client would, from plan listing through
purchase, approval, progress edits and delivery.
"""

import pytest
import tempfile
from pathlib import Path
import sys

# Add the project root to the path so we can import the main module
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

import main
from task_engine.engine_logging import observability_hooks


class TestTaskEngineIntegration:
    """Integration tests for the complete task workflow."""

    @pytest.fixture
    def data_dir(self):
        """Create a temporary data directory for integration testing."""
        with tempfile.TemporaryDirectory() as temp_dir:
            yield temp_dir

    def test_plan_purchase_to_delivery(self, data_dir):
        """Test the full path of a purchased plan."""
        plan = main.create_plan("Starter pack", offer_price=49, credit_cost=6, data_dir=data_dir)["plan"]

        purchase = main.purchase_plan(plan["id"], "client-1", quantity=4, data_dir=data_dir)
        task_id = purchase["task"]["id"]
        assert purchase["task"]["status"] == "PENDING_APPROVAL"

        # A purchase must be approved before it can be scheduled
        blocked = main.change_task_status(task_id, "ACTIVE", data_dir=data_dir)
        assert blocked["error"] == "Cannot change from PENDING_APPROVAL to ACTIVE"

        assert main.approve_task(task_id, data_dir=data_dir)["task"]["status"] == "PENDING"
        assert main.change_task_status(task_id, "ACTIVE", data_dir=data_dir)["success"] is True

        edit = main.update_task(
            task_id,
            {"progress": 100, "show_quantity_to_client": True, "status": "COMPLETED"},
            data_dir=data_dir,
        )
        assert edit["outcome"] == "applied"

        client_view = main.get_client_task(task_id, client_id="client-1", data_dir=data_dir)["task"]
        assert client_view["status_label"] == "Delivered"
        assert client_view["quantity"] == 4
        assert client_view["credit_cost"] == 6
        assert client_view["progress_display"] == 100
        assert client_view["active_milestone"]["name"] == "Delivered"

        rejected = main.change_task_status(task_id, "ACTIVE", data_dir=data_dir)
        assert rejected["next_suggested_step"] == "reopen_task"
        assert main.reopen_task(task_id, data_dir=data_dir)["task"]["status"] == "ACTIVE"

    def test_manual_progress_and_milestone_events(self, data_dir):
        """Test MANUAL progress edits and the milestone_reached event."""
        reached = []

        def on_milestone(**data):
            reached.append(data["milestone"])

        observability_hooks.register_hook("milestone_reached", on_milestone)
        try:
            task_id = main.create_task(
                "Blog posts", client_id="client-1", progress_mode="MANUAL",
                progress_target=8, data_dir=data_dir,
            )["task"]["id"]
            main.change_task_status(task_id, "ACTIVE", data_dir=data_dir)

            edit = main.update_task(task_id, {"progress_achieved": 5}, data_dir=data_dir)
        finally:
            observability_hooks.unregister_hook("milestone_reached", on_milestone)

        assert [m["name"] for m in edit["milestones_crossed"]] == ["Work Started", "First Draft", "Review Phase"]
        assert reached == ["Work Started", "First Draft", "Review Phase"]

        summary = main.resolve_task_milestones(task_id, data_dir=data_dir)
        assert summary["progress"] == 62.5
        assert summary["override"] is False
        assert summary["milestones"]["next"]["name"] == "Almost Ready"

        refused = main.set_progress_mode(task_id, "AUTO", data_dir=data_dir)
        assert "reached milestones" in refused["error"]

    def test_client_listing_and_admin_view(self, data_dir):
        main.create_task("Logo", client_id="client-1", quantity=2, data_dir=data_dir)
        main.create_task("Banner", client_id="client-2", data_dir=data_dir)

        listing = main.list_client_tasks("client-1", data_dir=data_dir)
        assert listing["count"] == 1
        assert "quantity" not in listing["tasks"][0]

        admin = main.get_admin_task(listing["tasks"][0]["id"], data_dir=data_dir)["task"]
        assert admin["quantity"] == 2
        assert admin["allowed_transitions"] == ["ACTIVE", "CANCELLED"]

    def test_create_with_custom_milestones(self, data_dir):
        created = main.create_task(
            "Logo", milestones=[{"name": "Half", "percentage": 50}], data_dir=data_dir,
        )
        assert [m["name"] for m in created["task"]["milestones"]] == ["Half"]

        broken = main.create_plan("Starter pack", milestones=[{"name": "Half"}], data_dir=data_dir)
        assert "Milestone requires name and percentage" in broken["error"]
        assert main.audit_tasks(data_dir=data_dir)["plans_skipped"] == 0

    def test_compute_task_progress_preview(self):
        result = main.compute_task_progress(
            progress_mode="MANUAL",
            progress_target=100,
            progress_achieved=120,
            milestones=[{"name": "Delivered", "percentage": 100}, {"name": "Overachieved", "percentage": 150}],
        )

        assert result["progress"] == 120
        assert result["override"] is False
        assert result["milestones"]["active"]["name"] == "Delivered"
        assert result["milestones"]["next"]["name"] == "Overachieved"

    def test_audit_and_guide(self, data_dir):
        main.create_task("Logo", data_dir=data_dir)

        assert main.audit_tasks(data_dir=data_dir)["healthy"] is True

        guide = main.get_status_guide()
        assert guide["transitions"]["ACTIVE"] == ["CANCELLED", "COMPLETED"]
        assert guide["labels"]["ACTIVE"] == "In Progress"

    def test_tasks_resource(self, data_dir, monkeypatch):
        monkeypatch.setenv("TASK_ENGINE_DATA_DIR", data_dir)
        assert main.resource_tasks() == "No tasks have been created yet."

        main.create_task("Logo", client_id="client-1", data_dir=data_dir)

        text = main.resource_tasks()
        assert "Logo" in text
        assert "Status: PENDING (Scheduled)" in text
        assert "Client: client-1" in text
