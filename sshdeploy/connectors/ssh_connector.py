"""
SSH Connector для подключения к серверам развертывания
"""
import asyncio
import socket
from contextlib import asynccontextmanager
from datetime import datetime
from functools import partial
from pathlib import Path
from typing import Any, Dict, Optional

import paramiko
from loguru import logger
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config.deploy_config import load_env_file
from ..config.runner_config import ConnectionSettings
from ..exceptions import ConfigurationError, SSHConnectionError
from ..models.command_result import CommandResult
from ..models.deploy_models import Host, Task
from .remote_executor import RemoteExecutor

TRANSIENT_CONNECT_ERRORS = (paramiko.SSHException, EOFError, socket.error)


class SSHConnector:
    """SSH клиент одного хоста: аутентификация, подключение, выполнение задач"""

    def __init__(
        self,
        name: str,
        host: Host,
        settings: Optional[ConnectionSettings] = None,
        debug: bool = False
    ):
        """
        Args:
            name: Имя хоста в конфигурации
            host: Описание хоста
            settings: Параметры подключения
            debug: Подробное логирование команд

        Raises:
            ConfigurationError: нет метода аутентификации, ключ или env файл недоступны
        """
        self.name = name
        self.host = host
        self.settings = settings or ConnectionSettings()
        self.debug = debug
        self.client: Optional[paramiko.SSHClient] = None
        self.connected = False
        self.connection_time: Optional[datetime] = None
        self._executor: Optional[RemoteExecutor] = None

        self.logger = logger.bind(component="SSHConnector", host=name)

        self.auth_method = self._resolve_auth_method()
        self.env = load_env_file(host.env_file)

        self.stats = {
            'connection_attempts': 0,
            'successful_connections': 0,
            'failed_connections': 0,
        }

    @property
    def identity(self) -> str:
        return self.host.identity

    @property
    def port(self) -> int:
        if 'port' in self.host.model_fields_set:
            return self.host.port
        return self.settings.port

    def _resolve_auth_method(self) -> str:
        """Определяет метод аутентификации: пароль приоритетнее ключа"""
        if self.host.password:
            return "password"
        if self.host.private_key:
            key_path = Path(self.host.private_key).expanduser()
            if not key_path.is_file():
                raise ConfigurationError(f"failed to read private key: {self.host.private_key}")
            return "key"
        raise ConfigurationError(f"host {self.name}: password or private_key required")

    def _prepare_connection_params(self) -> Dict[str, Any]:
        """Подготовка параметров подключения"""
        params = {
            'hostname': self.host.host,
            'port': self.port,
            'username': self.host.username,
            'timeout': self.settings.connect_timeout,
            'banner_timeout': self.settings.banner_timeout,
            'auth_timeout': self.settings.auth_timeout,
            'look_for_keys': False,
            'allow_agent': False
        }

        if self.auth_method == "password":
            params['password'] = self.host.password
            self.logger.debug("Используется аутентификация по паролю")
        else:
            params['key_filename'] = str(Path(self.host.private_key).expanduser())
            self.logger.debug(f"Используется аутентификация по ключу: {self.host.private_key}")

        return params

    async def connect(self, timeout: Optional[float] = None) -> bool:
        """
        Устанавливает SSH соединение

        Args:
            timeout: Общий таймаут одной попытки в секундах

        Raises:
            SSHConnectionError: подключение не удалось
        """
        self.logger.info(f"Попытка подключения к {self.identity}:{self.port}")

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.settings.connect_attempts),
            wait=wait_exponential(
                multiplier=1,
                min=self.settings.retry_min_wait,
                max=self.settings.retry_max_wait
            ),
            retry=(
                retry_if_exception_type(TRANSIENT_CONNECT_ERRORS)
                & retry_if_not_exception_type(paramiko.AuthenticationException)
            ),
            reraise=True
        )

        try:
            async for attempt in retrying:
                with attempt:
                    await self._connect_once(timeout)
        except Exception as e:
            self.stats['failed_connections'] += 1
            self.logger.error(f"Ошибка SSH подключения: {e}")
            raise SSHConnectionError(f"failed to connect to {self.name}: {e}") from e

        self.connected = True
        self.connection_time = datetime.now()
        self.stats['successful_connections'] += 1
        self.logger.info("SSH подключение установлено успешно")
        return True

    async def _connect_once(self, timeout: Optional[float]):
        """Одна попытка подключения"""
        self.stats['connection_attempts'] += 1

        client = paramiko.SSHClient()
        # проверка ключа хоста отключена
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        params = self._prepare_connection_params()

        loop = asyncio.get_running_loop()
        try:
            dial = loop.run_in_executor(None, partial(client.connect, **params))
            if timeout is not None:
                await asyncio.wait_for(dial, timeout)
            else:
                await dial
        except BaseException:
            client.close()
            raise

        self.client = client
        self._executor = None

    async def disconnect(self):
        """Закрывает SSH соединение"""
        if self.client is None:
            return
        try:
            self.client.close()
            self.logger.info("SSH соединение закрыто")
        except Exception as e:
            self.logger.error(f"Ошибка при закрытии SSH соединения: {e}")
        finally:
            self.client = None
            self.connected = False
            self._executor = None

    @property
    def executor(self) -> RemoteExecutor:
        """Исполнитель задач на текущем соединении"""
        if self._executor is None or self._executor.client is not self.client:
            self._executor = RemoteExecutor(
                self.client,
                label=self.name,
                env=self.env,
                default_timeout=self.settings.command_timeout
            )
        return self._executor

    async def execute(self, task: Task, debug: Optional[bool] = None) -> CommandResult:
        """Выполняет задачу с таймаутом по умолчанию"""
        return await self.executor.execute(task, self.debug if debug is None else debug)

    async def execute_with_context(
        self,
        task: Task,
        debug: Optional[bool] = None,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> CommandResult:
        """Выполняет задачу с таймаутом и событием отмены"""
        return await self.executor.execute_with_context(
            task,
            self.debug if debug is None else debug,
            timeout=timeout,
            cancel_event=cancel_event
        )

    def get_stats(self) -> Dict[str, Any]:
        """Возвращает статистику подключения"""
        return {
            **self.stats,
            'connected': self.connected,
            'connection_time': self.connection_time.isoformat() if self.connection_time else None,
            'host': self.host.host,
            'username': self.host.username,
            'auth_method': self.auth_method
        }

    @asynccontextmanager
    async def connection_context(self, timeout: Optional[float] = None):
        """Контекстный менеджер для SSH соединения"""
        try:
            await self.connect(timeout)
            yield self
        finally:
            await self.disconnect()

    def __str__(self) -> str:
        status = "Connected" if self.connected else "Disconnected"
        return f"SSHConnector({self.name}: {self.identity}:{self.port}, {status})"

    def __repr__(self) -> str:
        return f"SSHConnector(name='{self.name}', host='{self.host.host}', connected={self.connected})"
