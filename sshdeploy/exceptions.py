"""
Исключения SSH Deploy

Иерархия ошибок разделяет ошибки конфигурации (до любой сетевой активности),
ошибки подключения, ошибки транспорта во время выполнения команды и отмену.
Обычный ненулевой код возврата команды исключением не является.
"""
from typing import List, Optional


class DeployError(Exception):
    """Базовое исключение SSH Deploy"""
    pass


class ConfigurationError(DeployError):
    """Ошибка конфигурации: фатальна для запуска, сеть не затрагивается"""
    pass


class HostNotFoundError(ConfigurationError):
    """Запрошенный хост отсутствует в конфигурации"""

    def __init__(self, host: str):
        self.host = host
        super().__init__(f"host {host} not found")


class NoHostsSelectedError(ConfigurationError):
    """Не выбран ни один хост"""

    def __init__(self, message: str = "no hosts selected; use deploy <host> or deploy all"):
        super().__init__(message)


class TaskNotFoundError(ConfigurationError):
    """Запрошенная задача отсутствует"""

    def __init__(self, task: str):
        self.task = task
        super().__init__(f"task '{task}' not found")


class UnknownDependencyError(ConfigurationError):
    """depends_on ссылается на несуществующую задачу"""

    def __init__(self, task: str, dependency: str):
        self.task = task
        self.dependency = dependency
        super().__init__(f"task '{task}': depends_on task '{dependency}' does not exist")


class DependencyCycleError(ConfigurationError):
    """Циклическая зависимость между задачами"""

    def __init__(self, cycle: Optional[List[str]] = None, message: Optional[str] = None):
        self.cycle = list(cycle or [])
        if message is None:
            if self.cycle:
                message = f"circular dependency detected: {' -> '.join(self.cycle)}"
            else:
                message = "unexpected cycle in task dependencies"
        super().__init__(message)


class SSHConnectionError(DeployError):
    """Исключение для ошибок SSH подключения"""
    pass


class SSHCommandError(DeployError):
    """Ошибка транспорта или сессии во время выполнения команды"""

    def __init__(self, message: str, output: str = "", host: Optional[str] = None):
        self.exit_code = -1
        self.output = output
        self.host = host
        super().__init__(message)


class CommandCancelledError(DeployError):
    """Ожидание команды прервано по таймауту или отмене"""

    def __init__(self, reason: str, host: Optional[str] = None):
        self.exit_code = -1
        self.reason = reason
        self.host = host
        super().__init__(f"command execution cancelled: {reason}")
