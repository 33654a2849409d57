"""
Конфигурация развертывания: хосты, задачи и параметры
"""
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from dotenv import dotenv_values
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from ..exceptions import ConfigurationError, DependencyCycleError, UnknownDependencyError
from ..models.deploy_models import Host, Task
from ..runner.dependency_resolver import find_cycle
from .runner_config import RunnerSettings

MIN_CONFIG_VERSION = "0.1.0"
DEFAULT_CONFIG_FILES = ("deploy.yaml", "deploy.yml")


def _version_tuple(version: str) -> Tuple[int, ...]:
    parts = []
    for part in version.strip().split("."):
        digits = "".join(ch for ch in part if ch.isdigit())
        parts.append(int(digits) if digits else 0)
    return tuple(parts)


def is_version_supported(version: str, minimum: str = MIN_CONFIG_VERSION) -> bool:
    """Версия конфигурации должна быть 0.x и не ниже минимальной"""
    if not version or not version.startswith("0."):
        return False
    return _version_tuple(version) >= _version_tuple(minimum)


class DeployConfig(BaseModel):
    """Конфигурация развертывания"""

    version: str = Field(..., description="Версия формата конфигурации")
    appname: str = Field(..., min_length=1, description="Имя приложения")
    hosts: Dict[str, Host] = Field(..., description="Хосты по имени")
    tasks: List[Task] = Field(..., description="Задачи")
    params: Dict[str, str] = Field(default_factory=dict, description="Параметры для подстановки ${param}")
    release_version: int = Field(default_factory=lambda: int(time.time() * 1000), description="Версия релиза")
    settings: RunnerSettings = Field(default_factory=RunnerSettings)

    @field_validator('params', mode='before')
    @classmethod
    def stringify_params(cls, v):
        if v is None:
            return {}
        return {str(key): str(value) for key, value in v.items()}

    @field_validator('hosts')
    @classmethod
    def validate_hosts(cls, v):
        if not v:
            raise ValueError("at least one host is required")
        return v

    @field_validator('tasks')
    @classmethod
    def validate_tasks(cls, v):
        if not v:
            raise ValueError("at least one task is required")
        seen = set()
        for index, task in enumerate(v):
            if task.name in seen:
                raise ValueError(f"duplicate task name '{task.name}' at index {index}")
            seen.add(task.name)
        return v

    @model_validator(mode='after')
    def validate_dependencies(self) -> 'DeployConfig':
        """Все depends_on существуют и не образуют цикл"""
        names = {task.name for task in self.tasks}
        for task in self.tasks:
            for dep in task.depends_on:
                if dep not in names:
                    raise UnknownDependencyError(task.name, dep)

        cycle = find_cycle(self.tasks)
        if cycle:
            raise DependencyCycleError(cycle)
        return self

    @classmethod
    def from_dict(cls, data: Dict[str, Any], min_version: str = MIN_CONFIG_VERSION) -> 'DeployConfig':
        """
        Построить конфигурацию из словаря

        Подставляет ${param}, ${appname} и ${release_version} в cmd, dir
        и message каждой задачи.

        Raises:
            ConfigurationError: конфигурация некорректна
        """
        if not isinstance(data, dict):
            raise ConfigurationError("invalid config format: mapping expected")

        version = str(data.get('version') or "")
        if not is_version_supported(version, min_version):
            raise ConfigurationError(f"config version {version or '<empty>'} is outdated; update to {min_version}+")

        try:
            config = cls(**data)
        except ValidationError as e:
            raise ConfigurationError(f"invalid config: {e}") from e

        return config.with_literals()

    @classmethod
    def from_yaml(cls, config_path: str, min_version: str = MIN_CONFIG_VERSION) -> 'DeployConfig':
        """Загрузка конфигурации из YAML файла"""
        config_path = Path(config_path)
        if not config_path.exists():
            raise ConfigurationError(f"Файл конфигурации не найден: {config_path}")

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"failed to read config: {e}") from e

        return cls.from_dict(data or {}, min_version=min_version)

    def parse_literal(self, value: Optional[str]) -> Optional[str]:
        """Заменить ${param} значениями из конфигурации"""
        if not value:
            return value
        output = value
        for key, param in self.params.items():
            output = output.replace(f"${{{key}}}", param)
        output = output.replace("${appname}", self.appname)
        output = output.replace("${release_version}", str(self.release_version))
        return output

    def with_literals(self) -> 'DeployConfig':
        """Копия конфигурации с подставленными литералами в задачах"""
        tasks = [
            task.model_copy(update={
                'cmd': self.parse_literal(task.cmd),
                'dir': self.parse_literal(task.dir),
                'message': self.parse_literal(task.message),
            })
            for task in self.tasks
        ]
        return self.model_copy(update={'tasks': tasks})

    def get_task(self, name: str) -> Optional[Task]:
        for task in self.tasks:
            if task.name == name:
                return task
        return None

    def get_hosts_info(self) -> List[Dict[str, Any]]:
        """Краткая информация о хостах"""
        return [
            {'name': name, 'identity': host.identity, 'port': host.port}
            for name, host in self.hosts.items()
        ]

    def to_dict(self) -> Dict[str, Any]:
        """Преобразование в словарь"""
        return self.model_dump(by_alias=True)


def load_env_file(env_file: Optional[str]) -> Dict[str, str]:
    """
    Загрузить переменные окружения хоста

    Args:
        env_file: Путь к файлу KEY=VALUE или None

    Returns:
        Словарь переменных (пустой, если файл не указан)

    Raises:
        ConfigurationError: файл указан, но не найден
    """
    if not env_file:
        return {}
    path = Path(env_file).expanduser().resolve()
    if not path.is_file():
        raise ConfigurationError(f"env file {env_file} not found")
    return {key: value for key, value in dotenv_values(path).items() if value is not None}


def find_config_file(directory: Optional[str] = None) -> Path:
    """Найти файл конфигурации в директории"""
    base = Path(directory or ".")
    for name in DEFAULT_CONFIG_FILES:
        candidate = base / name
        if candidate.exists():
            return candidate
    raise ConfigurationError(
        f"no config file found; expected {' or '.join(DEFAULT_CONFIG_FILES)} in current directory"
    )
