"""
Оркестратор запуска: выбор хостов, порядок задач, подключение и выполнение
"""
import asyncio
import inspect
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from ..config.deploy_config import DeployConfig
from ..config.runner_config import PoolConfig
from ..connectors.connection_pool import ConnectionPool, PooledConnection
from ..connectors.ssh_connector import SSHConnector
from ..exceptions import (
    CommandCancelledError,
    HostNotFoundError,
    NoHostsSelectedError,
    SSHCommandError,
    SSHConnectionError,
)
from ..models.command_result import CommandResult, ExecutionStatus
from ..models.deploy_models import Task
from ..models.run_report import RunReport, TaskRunResult
from ..utils.logger import LogSink, LoguruSink, StructuredLogger
from .dependency_resolver import resolve, resolve_from_root

ALL_HOSTS = "all"

RetryHandler = Callable[[Task, str], Union[bool, Awaitable[bool]]]
Connection = Union[SSHConnector, PooledConnection]


class Orchestrator:
    """
    Выполнение задач развертывания на выбранных хостах

    Основные возможности:
    - Выбор хостов ("all" или имя хоста)
    - Порядок задач по depends_on, с lib задачами или без
    - Подключение ко всем хостам до выполнения (любой отказ прерывает запуск)
    - Последовательное выполнение задач на каждом хосте
    - Необязательный пул соединений
    """

    def __init__(
        self,
        config: DeployConfig,
        sink: Optional[LogSink] = None,
        pool: Optional[ConnectionPool] = None,
        retry_handler: Optional[RetryHandler] = None,
        connector_factory: Callable[..., SSHConnector] = SSHConnector
    ):
        """
        Args:
            config: Конфигурация развертывания
            sink: Приемник строк событий запуска
            pool: Пул соединений; без него соединения прямые
            retry_handler: Решает, повторять ли задачу с retry после неудачи
            connector_factory: Фабрика SSH клиентов
        """
        self.config = config
        self.settings = config.settings
        self.sink = sink or LoguruSink()
        self.pool = pool
        self.retry_handler = retry_handler
        self.connector_factory = connector_factory
        self.logger = StructuredLogger("Orchestrator")

    @property
    def pooling_enabled(self) -> bool:
        return self.pool is not None

    def enable_pooling(self, pool_config: Optional[PoolConfig] = None) -> ConnectionPool:
        """Включить пул соединений; очистка стартует при работающем event loop"""
        if self.pool is None:
            self.pool = ConnectionPool(
                pool_config or self.settings.pool,
                self.settings.connection,
                connector_factory=self.connector_factory
            )
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                self.logger.debug("Event loop не запущен, очистка пула стартует при первом запуске")
            else:
                self.pool.start()
        return self.pool

    def disable_pooling(self):
        if self.pool is not None:
            self.pool.close()
            self.pool = None

    def pool_stats(self) -> Dict[str, Any]:
        stats = self.pool.stats() if self.pool is not None else {}
        stats['pooling_enabled'] = self.pooling_enabled
        return stats

    def close(self):
        self.disable_pooling()

    def select_hosts(self, selector: Optional[str]) -> List[str]:
        """
        Определить имена целевых хостов

        Raises:
            NoHostsSelectedError: селектор пуст
            HostNotFoundError: хост с таким именем не настроен
        """
        if not selector:
            raise NoHostsSelectedError()
        if selector == ALL_HOSTS:
            return list(self.config.hosts)
        if selector not in self.config.hosts:
            raise HostNotFoundError(selector)
        return [selector]

    def resolve_tasks(self, task_name: Optional[str] = None, include_lib: bool = False) -> List[Task]:
        """
        Порядок выполнения задач

        Конкретная задача берется вместе с зависимостями (lib задачи
        среди них не отбрасываются), иначе берутся все задачи, кроме lib,
        если include_lib не задан.
        """
        if task_name:
            return resolve_from_root(self.config.tasks, task_name)

        selected = [task for task in self.config.tasks if include_lib or not task.lib]
        return resolve(selected)

    def plan(
        self,
        selector: Optional[str],
        task_name: Optional[str] = None,
        include_lib: bool = False
    ) -> Tuple[List[str], List[Task]]:
        """Хосты и порядок задач без сетевой активности"""
        return self.select_hosts(selector), self.resolve_tasks(task_name, include_lib)

    async def run(
        self,
        selector: Optional[str],
        task_name: Optional[str] = None,
        include_lib: bool = False,
        debug: bool = False,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> RunReport:
        """
        Выполнить запуск

        Args:
            selector: "all" или имя хоста
            task_name: Выполнить только эту задачу с зависимостями
            include_lib: Включить lib задачи
            debug: Подробный вывод команд
            timeout: Таймаут каждой команды в секундах
            cancel_event: Событие отмены запуска

        Returns:
            RunReport с результатом каждой пары (задача, хост)

        Raises:
            ConfigurationError: хост или задача не найдены, цикл зависимостей
            SSHConnectionError: не удалось подключиться к одному из хостов
        """
        hosts, tasks = self.plan(selector, task_name, include_lib)
        report = RunReport(hosts=hosts, tasks=[task.name for task in tasks])
        log = StructuredLogger("Orchestrator", report.run_id)
        command_timeout = timeout if timeout is not None else self.settings.connection.command_timeout

        if self.pool is not None:
            self.pool.start()

        connections: Dict[str, Connection] = {}
        try:
            await self._open_connections(hosts, debug, connections, log)
            await self._run_tasks(tasks, connections, report, debug, command_timeout, cancel_event, log)
        finally:
            await self._close_connections(connections)
            report.mark_finished()

        log.log_run_completion(
            success=report.success,
            duration=report.get_duration() or 0.0,
            results_total=len(report.results),
            results_failed=len(report.failed_results())
        )
        return report

    async def _open_connections(
        self,
        hosts: List[str],
        debug: bool,
        connections: Dict[str, Connection],
        log: StructuredLogger
    ):
        """Подключение ко всем хостам; первый отказ прерывает запуск"""
        # ошибки конфигурации хостов всплывают до сетевой активности
        connectors: Dict[str, SSHConnector] = {}
        for name in hosts:
            host = self.config.hosts[name]
            if self.pool is not None:
                connectors[name] = self.pool.build_connector(name, host, debug)
            else:
                connectors[name] = self.connector_factory(
                    name, host, settings=self.settings.connection, debug=debug
                )

        for name in hosts:
            host = self.config.hosts[name]
            try:
                if self.pool is not None:
                    connections[name] = await self.pool.get_connection(
                        name, host, debug, connector=connectors[name]
                    )
                else:
                    await connectors[name].connect()
                    connections[name] = connectors[name]
            except SSHConnectionError as e:
                log.log_ssh_connection(name, host.identity, success=False, pooled=self.pool is not None, error=str(e))
                self.sink.emit(f"❌ Connection failed: {name} ({host.identity}): {e}")
                raise

            log.log_ssh_connection(name, host.identity, success=True, pooled=self.pool is not None)
            self.sink.emit(f"📡 Connected: {name} ({host.identity})")

    async def _close_connections(self, connections: Dict[str, Connection]):
        for connection in connections.values():
            if isinstance(connection, PooledConnection):
                self.pool.release_connection(connection)
            else:
                await connection.disconnect()

    async def _run_tasks(
        self,
        tasks: List[Task],
        connections: Dict[str, Connection],
        report: RunReport,
        debug: bool,
        timeout: Optional[float],
        cancel_event: Optional[asyncio.Event],
        log: StructuredLogger
    ):
        """Задачи строго в разрешенном порядке, каждая на всех хостах"""
        lost: Dict[str, str] = {}

        for task in tasks:
            log.log_task_start(task.name, list(connections))
            for name, connection in connections.items():
                if name in lost:
                    report.add_result(TaskRunResult(
                        task=task.name,
                        host=name,
                        status=ExecutionStatus.SKIPPED,
                        expected=task.expect,
                        error=lost[name],
                        attempts=0
                    ))
                    self.sink.emit(f"⏭ {task.name}@{name}: Skipped ({lost[name]})")
                    continue

                self.sink.emit(f"🎲 {task.name}: started on {name}")
                result = await self._execute_on_host(task, name, connection, debug, timeout, cancel_event, log)
                report.add_result(result)
                log.log_task_result(result.task, result.host, result.status.value, result.attempts, result.error)

                if result.status == ExecutionStatus.CANCELLED:
                    report.cancelled = True
                    return
                if result.status == ExecutionStatus.FAILED and result.error is not None:
                    lost[name] = f"connection lost: {result.error}"

    async def _execute_on_host(
        self,
        task: Task,
        name: str,
        connection: Connection,
        debug: bool,
        timeout: Optional[float],
        cancel_event: Optional[asyncio.Event],
        log: StructuredLogger
    ) -> TaskRunResult:
        """Выполнение задачи на одном хосте с необязательным повтором"""
        host = self.config.hosts[name]
        if debug:
            self.sink.emit(f"🎲 {name}@{host.host}: {connection.executor.build_command(task)}")

        attempts = 0
        while True:
            attempts += 1
            try:
                command_result = await connection.execute_with_context(
                    task, debug, timeout=timeout, cancel_event=cancel_event
                )
            except CommandCancelledError as e:
                return self._cancelled_result(task, name, e, attempts)
            except (SSHCommandError, SSHConnectionError) as e:
                output = getattr(e, 'output', '')
                self.sink.emit(f"❌ {task.name}@{name}: Failed: {e}")
                if output and (debug or task.output):
                    self.sink.emit(output.rstrip())
                return TaskRunResult(
                    task=task.name,
                    host=name,
                    status=ExecutionStatus.FAILED,
                    exit_code=-1,
                    expected=task.expect,
                    output=output,
                    error=str(e),
                    attempts=attempts
                )

            log.log_command_execution(
                task.name, name, command_result.exit_code, task.expect, command_result.duration
            )

            if command_result.matches(task.expect):
                self._report_success(task, name, command_result, debug, retried=attempts > 1)
                return self._result_from_command(task, name, command_result, ExecutionStatus.COMPLETED, attempts)

            self._report_failure(task, name, command_result, debug)
            try:
                retry = attempts == 1 and task.retry and await self._should_retry(task, name, cancel_event)
            except CommandCancelledError as e:
                return self._cancelled_result(task, name, e, attempts)
            if retry:
                continue
            return self._result_from_command(task, name, command_result, ExecutionStatus.FAILED, attempts)

    async def _should_retry(self, task: Task, name: str, cancel_event: Optional[asyncio.Event] = None) -> bool:
        """
        Решение о повторе; асинхронный ответ ждется до отмены запуска

        Raises:
            CommandCancelledError: запуск отменен во время ожидания ответа
        """
        if self.retry_handler is None:
            return False
        answer = self.retry_handler(task, name)
        if not inspect.isawaitable(answer):
            return bool(answer)
        if cancel_event is None:
            return bool(await answer)

        answer_future = asyncio.ensure_future(answer)
        cancel_waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({answer_future, cancel_waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_waiter.cancel()

        if not answer_future.done():
            answer_future.cancel()
            raise CommandCancelledError("cancelled during retry prompt", host=name)
        return bool(answer_future.result())

    def _cancelled_result(self, task: Task, name: str, error: CommandCancelledError, attempts: int) -> TaskRunResult:
        self.sink.emit(f"❌ {task.name}@{name}: Cancelled ({error.reason})")
        return TaskRunResult(
            task=task.name,
            host=name,
            status=ExecutionStatus.CANCELLED,
            exit_code=-1,
            expected=task.expect,
            error=str(error),
            attempts=attempts
        )

    def _report_success(self, task: Task, name: str, result: CommandResult, debug: bool, retried: bool):
        suffix = "Succeeded after retry" if retried else "Succeeded"
        self.sink.emit(f"🎉 {task.name}@{name}: {suffix}")
        if (debug or task.output or task.message) and result.output.strip():
            self.sink.emit(result.output.rstrip())
        if task.message:
            self.sink.emit(f"📗 {task.message}")

    def _report_failure(self, task: Task, name: str, result: CommandResult, debug: bool):
        self.sink.emit(f"❌ {task.name}@{name}: Failed (code {result.exit_code})")
        if (debug or task.output or task.retry) and result.output.strip():
            self.sink.emit(result.output.rstrip())

    @staticmethod
    def _result_from_command(
        task: Task,
        name: str,
        result: CommandResult,
        status: ExecutionStatus,
        attempts: int
    ) -> TaskRunResult:
        return TaskRunResult(
            task=task.name,
            host=name,
            status=status,
            exit_code=result.exit_code,
            expected=task.expect,
            output=result.output,
            attempts=attempts,
            duration=result.duration,
            timestamp=result.timestamp
        )
