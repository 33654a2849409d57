"""
Пул SSH соединений с переиспользованием по ключу user@address
"""
import asyncio
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import paramiko
from loguru import logger

from ..config.runner_config import ConnectionSettings, PoolConfig
from ..models.command_result import CommandResult
from ..models.deploy_models import Host, Task
from .remote_executor import TRANSPORT_ERRORS, RemoteExecutor
from .ssh_connector import SSHConnector


class PooledConnection:
    """
    Соединение в пуле с метаданными аренды

    Пул владеет транспортом; арендатор держит соединение с in_use=True
    и обязан вернуть его через ConnectionPool.release_connection.
    """

    def __init__(
        self,
        client: Optional[paramiko.SSHClient],
        host: str,
        name: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        command_timeout: Optional[float] = 300,
        in_use: bool = False
    ):
        now = datetime.now()
        self.client = client
        self.host = host
        self.name = name or host
        self.created_at = now
        self.last_used = now
        self.in_use = in_use
        self.detached = False
        self.lock = threading.Lock()
        self.executor = RemoteExecutor(client, label=self.name, env=env, default_timeout=command_timeout)

    def is_usable(self) -> bool:
        """Соединение живо: транспорт есть и пробная сессия открывается"""
        if self.client is None:
            return False
        try:
            transport = self.client.get_transport()
            if transport is None or not transport.is_active():
                return False
            session = transport.open_session()
            session.close()
        except TRANSPORT_ERRORS:
            return False
        return True

    def try_acquire(self) -> bool:
        """Взять соединение в аренду, если оно свободно и еще в пуле"""
        with self.lock:
            if self.in_use or self.detached:
                return False
            self.in_use = True
            self.last_used = datetime.now()
            return True

    def release(self) -> bool:
        """Вернуть аренду; True, если соединение уже выведено из пула"""
        with self.lock:
            self.in_use = False
            self.last_used = datetime.now()
            return self.detached

    def snapshot(self) -> Dict[str, Any]:
        with self.lock:
            return {
                'in_use': self.in_use,
                'created_at': self.created_at,
                'last_used': self.last_used
            }

    def close(self):
        """Закрывает транспорт; ошибки логируются и не пробрасываются"""
        if self.client is None:
            return
        try:
            self.client.close()
        except Exception as e:
            logger.warning(f"Ошибка при закрытии соединения {self.host}: {e}")

    async def execute(self, task: Task, debug: bool = False) -> CommandResult:
        return await self.executor.execute(task, debug)

    async def execute_with_context(
        self,
        task: Task,
        debug: bool = False,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> CommandResult:
        return await self.executor.execute_with_context(task, debug, timeout=timeout, cancel_event=cancel_event)

    def __repr__(self) -> str:
        return f"PooledConnection(host='{self.host}', in_use={self.in_use})"


class ConnectionPool:
    """
    Пул SSH соединений

    Словарь соединений защищен общей блокировкой, состояние аренды каждого
    соединения - собственной, поэтому операции над разными соединениями
    друг с другом не конкурируют. Фоновая очистка запускается start().
    """

    def __init__(
        self,
        config: Optional[PoolConfig] = None,
        settings: Optional[ConnectionSettings] = None,
        connector_factory: Callable[..., SSHConnector] = SSHConnector
    ):
        self.config = config or PoolConfig()
        self.settings = settings or ConnectionSettings()
        self.connector_factory = connector_factory
        self._connections: Dict[str, PooledConnection] = {}
        self._lock = threading.RLock()
        self._cleanup_task: Optional[asyncio.Task] = None
        self.logger = logger.bind(component="ConnectionPool")

    @staticmethod
    def host_key(host: Host) -> str:
        return host.identity

    def start(self):
        """Запуск фоновой очистки (нужен работающий event loop)"""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.get_running_loop().create_task(self._cleanup_loop())
            self.logger.debug("Фоновая очистка пула запущена")

    def build_connector(self, name: str, host: Host, debug: bool = False) -> SSHConnector:
        """Клиент с настройками пула; проверяет конфигурацию хоста без подключения"""
        return self.connector_factory(name, host, settings=self.settings, debug=debug)

    async def get_connection(
        self,
        name: str,
        host: Host,
        debug: bool = False,
        timeout: Optional[float] = None,
        connector: Optional[SSHConnector] = None
    ) -> PooledConnection:
        """
        Получить соединение в исключительное пользование

        Свободное и живое соединение из пула переиспользуется, иначе
        создается новое и заменяет прежнюю запись для этого хоста.

        Args:
            connector: Заранее созданный клиент для нового подключения;
                без него клиент строит connector_factory

        Raises:
            ConfigurationError: нет метода аутентификации
            SSHConnectionError: подключение не удалось
        """
        host_key = self.host_key(host)

        with self._lock:
            conn = self._connections.get(host_key)

        if conn is not None:
            loop = asyncio.get_running_loop()
            usable = await loop.run_in_executor(None, conn.is_usable)
            if usable and conn.try_acquire():
                self.logger.debug(
                    "Переиспользование SSH соединения из пула",
                    host=host_key,
                    age=str(datetime.now() - conn.created_at)
                )
                return conn

        if connector is None:
            connector = self.build_connector(name, host, debug)
        await connector.connect(timeout)

        pooled = PooledConnection(
            client=connector.client,
            host=host_key,
            name=name,
            env=connector.env,
            command_timeout=self.settings.command_timeout,
            in_use=True
        )

        with self._lock:
            old = self._connections.get(host_key)
            self._connections[host_key] = pooled

        if old is not None and old is not pooled:
            self._retire(old)

        self.logger.debug("Создано новое SSH соединение", host=host_key)
        return pooled

    def release_connection(self, conn: Optional[PooledConnection]):
        """Вернуть соединение в пул; None игнорируется"""
        if conn is None:
            return

        if conn.release():
            # соединение уже выведено из пула
            self._close_in_background(conn)

        self.logger.debug("SSH соединение возвращено в пул", host=conn.host)

    def _retire(self, conn: PooledConnection):
        """Вывести соединение из пула: свободное закрыть сразу, арендованное - при возврате"""
        with conn.lock:
            conn.detached = True
            leased = conn.in_use
        if not leased:
            self._close_in_background(conn)

    def _close_in_background(self, conn: PooledConnection):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            conn.close()
            return
        loop.run_in_executor(None, conn.close)

    def stats(self) -> Dict[str, Any]:
        """Снимок состояния пула"""
        with self._lock:
            connections = list(self._connections.values())

        in_use = sum(1 for conn in connections if conn.snapshot()['in_use'])
        return {
            'total_connections': len(connections),
            'in_use': in_use,
            'idle': len(connections) - in_use,
            'max_idle': self.config.max_idle,
            'max_lifetime': self.config.max_lifetime,
            'idle_timeout': self.config.idle_timeout
        }

    def cleanup(self, now: Optional[datetime] = None) -> List[str]:
        """
        Удалить устаревшие соединения

        Соединение старше max_lifetime удаляется из пула независимо от аренды
        (арендованное закрывается при возврате), простаивающее дольше
        idle_timeout - только если свободно.

        Returns:
            Ключи удаленных соединений
        """
        now = now or datetime.now()
        max_lifetime = self.config.max_lifetime_delta
        idle_timeout = self.config.idle_timeout_delta
        removed: List[PooledConnection] = []

        with self._lock:
            for host_key, conn in list(self._connections.items()):
                state = conn.snapshot()
                age = now - state['created_at']
                idle_time = now - state['last_used']

                if age > max_lifetime:
                    self.logger.debug("Удаление SSH соединения по времени жизни", host=host_key, age=str(age))
                elif not state['in_use'] and idle_time > idle_timeout:
                    self.logger.debug("Удаление простаивающего SSH соединения", host=host_key, idle_time=str(idle_time))
                else:
                    continue

                del self._connections[host_key]
                removed.append(conn)

        for conn in removed:
            self._retire(conn)

        return [conn.host for conn in removed]

    async def _cleanup_loop(self):
        """Периодическая очистка пула"""
        while True:
            await asyncio.sleep(self.config.cleanup_interval)
            try:
                removed = self.cleanup()
                if removed:
                    self.logger.info(f"Очистка пула удалила соединений: {len(removed)}")
            except Exception as e:
                self.logger.error(f"Ошибка очистки пула: {e}")

    def close(self):
        """Закрыть все соединения и остановить очистку"""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            self._cleanup_task = None

        with self._lock:
            connections = list(self._connections.items())
            self._connections.clear()

        for host_key, conn in connections:
            conn.close()
            self.logger.debug("Закрыто SSH соединение пула", host=host_key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)

    def __contains__(self, host_key: str) -> bool:
        with self._lock:
            return host_key in self._connections
