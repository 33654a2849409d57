"""
Models module for SSH Deploy.

This module contains task/host records and execution result models.
"""

from .deploy_models import Task, Host
from .command_result import CommandResult, ExecutionStatus
from .run_report import TaskRunResult, RunReport

__all__ = [
    "Task",
    "Host",
    "CommandResult",
    "ExecutionStatus",
    "TaskRunResult",
    "RunReport"
]
