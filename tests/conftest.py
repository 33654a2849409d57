"""
Конфигурация pytest для проекта SSH Deploy

Содержит общие фикстуры и настройки для всех тестов. paramiko везде
заменен моками, сеть не используется.
"""

import io
from typing import Any, Dict, List, Optional, Tuple, Union
from unittest.mock import AsyncMock, MagicMock, Mock

import pytest
import yaml

from sshdeploy.config.deploy_config import DeployConfig
from sshdeploy.connectors.ssh_connector import SSHConnector
from sshdeploy.exceptions import SSHConnectionError
from sshdeploy.models.command_result import CommandResult
from sshdeploy.models.deploy_models import Host, Task


Outcome = Union[int, CommandResult, BaseException]


def make_channel(output: bytes = b"", exit_code: int = 0) -> MagicMock:
    """Мок канала paramiko с готовым выводом и кодом возврата."""
    channel = MagicMock()
    channel.makefile.return_value = io.BytesIO(output)
    channel.recv_exit_status.return_value = exit_code
    return channel


def make_ssh_client(channels: Optional[List[Any]] = None, active: bool = True) -> MagicMock:
    """Мок paramiko.SSHClient с транспортом, выдающим каналы по очереди."""
    client = MagicMock()
    transport = MagicMock()
    transport.is_active.return_value = active
    if channels is not None:
        transport.open_session.side_effect = channels
    else:
        transport.open_session.return_value = make_channel()
    client.get_transport.return_value = transport
    return client


class FakeConnectorFactory:
    """
    Подмена SSHConnector для оркестратора

    outcomes задает сценарий по (хост, задача): код возврата,
    готовый CommandResult или исключение. Без сценария задача успешна.
    """

    def __init__(self):
        self.created: Dict[str, Mock] = {}
        self.calls: List[Tuple[str, str]] = []
        self.outcomes: Dict[Tuple[str, str], List[Outcome]] = {}
        self.connect_errors: Dict[str, Exception] = {}

    def script(self, host: str, task: str, *outcomes: Outcome):
        self.outcomes[(host, task)] = list(outcomes)

    def __call__(self, name: str, host: Host, settings=None, debug: bool = False) -> Mock:
        connector = Mock(spec=SSHConnector)
        connector.name = name
        connector.host = host
        connector.env = {}
        connector.client = make_ssh_client()
        connector.connect = AsyncMock(side_effect=self.connect_errors.get(name), return_value=True)
        connector.disconnect = AsyncMock()
        connector.execute_with_context = AsyncMock(side_effect=self._executor_for(name))
        connector.executor = Mock()
        connector.executor.build_command.side_effect = lambda task: task.cmd
        self.created[name] = connector
        return connector

    def _executor_for(self, name: str):
        async def execute(task: Task, debug: bool = False, timeout=None, cancel_event=None) -> CommandResult:
            self.calls.append((name, task.name))
            script = self.outcomes.get((name, task.name))
            outcome: Outcome = script.pop(0) if script else 0
            if isinstance(outcome, BaseException):
                raise outcome
            if isinstance(outcome, CommandResult):
                return outcome
            return CommandResult(task.cmd, outcome, f"{task.name} output\n", host=name)
        return execute


@pytest.fixture
def hosts_data() -> Dict[str, Dict[str, Any]]:
    """Фикстура хостов конфигурации."""
    return {
        "h1": {"host": "10.0.0.1", "username": "deploy", "password": "secret"},
        "h2": {"host": "10.0.0.2", "username": "deploy", "password": "secret"},
    }


@pytest.fixture
def tasks_data() -> List[Dict[str, Any]]:
    """Фикстура задач конфигурации."""
    return [
        {"name": "prepare", "cmd": "mkdir -p /opt/${appname}"},
        {
            "name": "upload",
            "cmd": "cp build.tar /opt/${appname}/${release_version}.tar",
            "dir": "/tmp",
            "depends_on": ["prepare"],
        },
        {
            "name": "restart",
            "cmd": "systemctl restart ${service}",
            "depends_on": ["upload"],
            "message": "${appname} restarted",
        },
        {"name": "cleanup", "cmd": "rm -rf /tmp/build", "lib": True},
    ]


@pytest.fixture
def config_data(hosts_data, tasks_data) -> Dict[str, Any]:
    """Фикстура полной конфигурации развертывания."""
    return {
        "version": "0.1.2",
        "appname": "shop",
        "hosts": hosts_data,
        "tasks": tasks_data,
        "params": {"service": "shop-api"},
    }


@pytest.fixture
def deploy_config(config_data) -> DeployConfig:
    return DeployConfig.from_dict(config_data)


@pytest.fixture
def config_file(tmp_path, config_data):
    """Временный файл deploy.yaml."""
    path = tmp_path / "deploy.yaml"
    with open(path, "w", encoding="utf-8") as f:
        yaml.dump(config_data, f, default_flow_style=False, allow_unicode=True)
    return path


@pytest.fixture
def sample_host() -> Host:
    return Host(host="10.0.0.1", username="deploy", password="secret")


@pytest.fixture
def sample_task() -> Task:
    return Task(name="build", cmd="make build", dir="/srv/app")


@pytest.fixture
def connector_factory() -> FakeConnectorFactory:
    return FakeConnectorFactory()


@pytest.fixture
def connection_refused() -> SSHConnectionError:
    return SSHConnectionError("failed to connect to h2: [Errno 111] Connection refused")


# Маркеры для категоризации тестов
def pytest_configure(config):
    """Настройка маркеров pytest."""
    config.addinivalue_line(
        "markers", "unit: Unit тесты"
    )
    config.addinivalue_line(
        "markers", "integration: Интеграционные тесты"
    )
    config.addinivalue_line(
        "markers", "slow: Медленные тесты"
    )
    config.addinivalue_line(
        "markers", "ssh: Тесты, требующие SSH соединения"
    )


def pytest_collection_modifyitems(config, items):
    """Модификация элементов коллекции тестов."""
    for item in items:
        # Добавляем маркер unit для тестов без маркеров
        if not any(marker.name in ['unit', 'integration', 'slow', 'ssh'] for marker in item.iter_markers()):
            item.add_marker(pytest.mark.unit)
