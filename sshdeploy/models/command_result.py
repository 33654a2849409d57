"""
Модели результатов выполнения команд
"""
from enum import Enum
from typing import Optional, Dict, Any
from datetime import datetime


class ExecutionStatus(Enum):
    """Статус выполнения задачи на хосте"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


class CommandResult:
    """Результат удаленной команды, завершившейся с кодом возврата"""

    def __init__(
        self,
        command: str,
        exit_code: int,
        output: str = "",
        host: Optional[str] = None,
        duration: Optional[float] = None,
        timestamp: Optional[datetime] = None
    ):
        self.command = command
        self.exit_code = exit_code
        self.output = output
        self.host = host
        self.duration = duration or 0.0
        self.timestamp = timestamp or datetime.now()

    @property
    def success(self) -> bool:
        """Проверка успешности выполнения команды"""
        return self.exit_code == 0

    def matches(self, expect: int) -> bool:
        """Совпадает ли код возврата с ожидаемым"""
        return self.exit_code == expect

    def to_dict(self) -> Dict[str, Any]:
        """Преобразование в словарь"""
        return {
            'command': self.command,
            'exit_code': self.exit_code,
            'output': self.output,
            'host': self.host,
            'duration': self.duration,
            'timestamp': self.timestamp.isoformat(),
            'success': self.success
        }

    def __str__(self) -> str:
        status = "SUCCESS" if self.success else "FAILED"
        return f"Command: {self.command} | Status: {status} | Exit Code: {self.exit_code}"

    def __repr__(self) -> str:
        return f"CommandResult(command='{self.command}', exit_code={self.exit_code}, host={self.host!r})"
