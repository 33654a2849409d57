"""
Результаты запуска развертывания
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
import uuid

from .command_result import ExecutionStatus


@dataclass
class TaskRunResult:
    """Итог выполнения одной задачи на одном хосте"""

    task: str
    host: str
    status: ExecutionStatus
    exit_code: Optional[int] = None
    expected: int = 0
    output: str = ""
    error: Optional[str] = None
    attempts: int = 1
    duration: float = 0.0
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def succeeded(self) -> bool:
        return self.status == ExecutionStatus.COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        """Преобразование в словарь"""
        return {
            "task": self.task,
            "host": self.host,
            "status": self.status.value,
            "exit_code": self.exit_code,
            "expected": self.expected,
            "output": self.output,
            "error": self.error,
            "attempts": self.attempts,
            "duration": self.duration,
            "timestamp": self.timestamp.isoformat()
        }


@dataclass
class RunReport:
    """Отчет о запуске: выбранные хосты, порядок задач и результаты"""

    hosts: List[str] = field(default_factory=list)
    tasks: List[str] = field(default_factory=list)
    results: List[TaskRunResult] = field(default_factory=list)
    cancelled: bool = False
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    def add_result(self, result: TaskRunResult):
        self.results.append(result)

    def failed_results(self) -> List[TaskRunResult]:
        """Результаты, отличные от успешных"""
        return [r for r in self.results if not r.succeeded]

    @property
    def success(self) -> bool:
        return not self.cancelled and not self.failed_results()

    def mark_finished(self):
        self.finished_at = datetime.now()

    def get_duration(self) -> Optional[float]:
        """Длительность запуска в секундах"""
        if self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Преобразование в словарь"""
        return {
            "run_id": self.run_id,
            "hosts": list(self.hosts),
            "tasks": list(self.tasks),
            "results": [r.to_dict() for r in self.results],
            "cancelled": self.cancelled,
            "success": self.success,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration": self.get_duration()
        }
