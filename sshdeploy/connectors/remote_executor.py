"""
Выполнение одной задачи на установленном SSH соединении
"""
import asyncio
import shlex
import socket
from datetime import datetime
from typing import Dict, Optional

import paramiko
from loguru import logger

from ..exceptions import CommandCancelledError, SSHCommandError, SSHConnectionError
from ..models.command_result import CommandResult
from ..models.deploy_models import Task

PTY_TERM = "xterm"
PTY_WIDTH = 80
PTY_HEIGHT = 24
READ_CHUNK = 32768

TRANSPORT_ERRORS = (paramiko.SSHException, EOFError, socket.error)


def _discard_result(future: asyncio.Future):
    # результат брошенной команды никому не нужен, но исключение надо забрать
    if not future.cancelled():
        future.exception()


class RemoteExecutor:
    """
    Запуск команды задачи в новой SSH сессии

    Ненулевой код возврата удаленной команды - обычный результат
    (CommandResult). Ошибки транспорта и сессии поднимаются как
    SSHCommandError, отмена ожидания - как CommandCancelledError.
    """

    def __init__(
        self,
        client: Optional[paramiko.SSHClient],
        label: str,
        env: Optional[Dict[str, str]] = None,
        default_timeout: Optional[float] = 300
    ):
        self.client = client
        self.label = label
        self.env = dict(env or {})
        self.default_timeout = default_timeout
        self.logger = logger.bind(component="RemoteExecutor", host=label)

    def build_command(self, task: Task) -> str:
        """Команда с переходом в рабочую директорию и экспортом окружения"""
        command = task.cmd
        if task.dir:
            command = f"cd {task.dir} && {command}"
        if self.env:
            exports = "; ".join(f"export {key}={shlex.quote(value)}" for key, value in self.env.items())
            command = f"{exports}; {command}"
        return command

    def _ensure_transport(self) -> paramiko.Transport:
        """Проверка, что соединение установлено и не закрыто"""
        if self.client is None:
            raise SSHConnectionError(f"{self.label}: SSH client not connected")
        transport = self.client.get_transport()
        if transport is None or not transport.is_active():
            raise SSHConnectionError(f"{self.label}: SSH connection is closed")
        return transport

    def _run_command(self, command: str, ask_pass: bool) -> CommandResult:
        """Синхронное выполнение команды (выполняется в executor)"""
        start_time = datetime.now()
        transport = self._ensure_transport()

        try:
            channel = transport.open_session()
        except TRANSPORT_ERRORS as e:
            raise SSHCommandError(f"failed to create session: {e}", host=self.label) from e

        output = bytearray()
        try:
            if ask_pass:
                channel.get_pty(term=PTY_TERM, width=PTY_WIDTH, height=PTY_HEIGHT)
            channel.set_combine_stderr(True)
            channel.exec_command(command)

            stream = channel.makefile("rb")
            for chunk in iter(lambda: stream.read(READ_CHUNK), b""):
                output.extend(chunk)

            exit_code = channel.recv_exit_status()
        except TRANSPORT_ERRORS as e:
            raise SSHCommandError(
                f"command failed on {self.label}: {e}",
                output=output.decode('utf-8', errors='replace'),
                host=self.label
            ) from e
        finally:
            channel.close()

        text = output.decode('utf-8', errors='replace')
        if exit_code == -1:
            # канал закрыт без статуса выхода
            raise SSHCommandError(
                f"command on {self.label} exited without an exit status",
                output=text,
                host=self.label
            )

        return CommandResult(
            command=command,
            exit_code=exit_code,
            output=text,
            host=self.label,
            duration=(datetime.now() - start_time).total_seconds(),
            timestamp=start_time
        )

    async def execute(self, task: Task, debug: bool = False) -> CommandResult:
        """Выполнение задачи с таймаутом по умолчанию"""
        return await self.execute_with_context(task, debug, timeout=self.default_timeout)

    async def execute_with_context(
        self,
        task: Task,
        debug: bool = False,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> CommandResult:
        """
        Выполнение задачи с возможностью прервать ожидание

        Команда выполняется в отдельном потоке, вызывающий ждет первого из
        событий: завершения команды, таймаута или cancel_event. При отмене
        удаленный процесс не останавливается.

        Args:
            task: Задача
            debug: Логировать выполняемую команду
            timeout: Таймаут ожидания в секундах
            cancel_event: Событие отмены

        Returns:
            CommandResult с кодом возврата и объединенным выводом

        Raises:
            SSHConnectionError: клиент не подключен
            SSHCommandError: ошибка транспорта или сессии
            CommandCancelledError: ожидание прервано
        """
        self._ensure_transport()
        if cancel_event is not None and cancel_event.is_set():
            raise CommandCancelledError("cancelled before start", host=self.label)

        command = self.build_command(task)
        if debug:
            self.logger.debug(f"Выполнение команды: {command}")

        loop = asyncio.get_running_loop()
        run_future = loop.run_in_executor(None, self._run_command, command, task.ask_pass)

        waiters = {run_future}
        cancel_waiter = None
        if cancel_event is not None:
            cancel_waiter = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            run_future.add_done_callback(_discard_result)
            raise
        finally:
            if cancel_waiter is not None and not cancel_waiter.done():
                cancel_waiter.cancel()

        if run_future in done:
            return run_future.result()

        run_future.add_done_callback(_discard_result)
        if cancel_waiter is not None and cancel_waiter in done:
            reason = "cancelled by caller"
        else:
            reason = f"timed out after {timeout}s"
        self.logger.warning(f"Ожидание команды прервано ({reason}), удаленный процесс может продолжать работу")
        raise CommandCancelledError(reason, host=self.label)
