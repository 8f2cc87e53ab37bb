"""Task engine - lifecycle, progress and client visibility for client tasks."""

from .errors import InvalidTransition, NotATask
from .models import Milestone, ProgressMode, Task, TaskStatus
from .store import TaskStore
from .workflow import TaskWorkflow

__all__ = [
    "Task",
    "TaskStatus",
    "ProgressMode",
    "Milestone",
    "TaskStore",
    "TaskWorkflow",
    "InvalidTransition",
    "NotATask",
]
