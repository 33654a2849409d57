"""
Система логирования для SSH Deploy

Диагностические логи идут через loguru. События запуска (подключение,
старт и итог задачи, вывод команды) отправляются в LogSink отдельными
строками: потребители читают их построчно.
"""
import sys
import os
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union
from datetime import datetime

from loguru import logger
from rich.console import Console
from rich.markup import escape

from ..config.runner_config import LoggingConfig


class LoggerSetup:
    """Настройка системы логирования"""

    def __init__(self, config: Optional[Union[Dict[str, Any], LoggingConfig]] = None):
        """
        Инициализация системы логирования

        Args:
            config: Конфигурация логирования (словарь или LoggingConfig)
        """
        if isinstance(config, LoggingConfig):
            config = config.model_dump()
        self.config = config or self._get_default_config()
        self._setup_logging()

    def _get_default_config(self) -> Dict[str, Any]:
        """Получение конфигурации по умолчанию"""
        return LoggingConfig().model_dump()

    def _setup_logging(self):
        """Настройка системы логирования"""
        logger.remove()

        self._ensure_log_directories()
        self._setup_console_logging()
        self._setup_file_logging()
        self._setup_error_logging()
        self._add_context_logging()

    def _ensure_log_directories(self):
        """Создание директорий для логов"""
        for key in ('log_file', 'error_file'):
            Path(self.config[key]).parent.mkdir(parents=True, exist_ok=True)

    def _setup_console_logging(self):
        """Настройка консольного логирования"""
        console_format = (
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        )

        # stdout занят строками событий запуска
        logger.add(
            sys.stderr,
            level=self.config['level'],
            format=console_format,
            colorize=True,
            filter=self._console_filter
        )

    def _setup_file_logging(self):
        """Настройка файлового логирования"""
        file_format = (
            "{time:YYYY-MM-DD HH:mm:ss} | "
            "{level: <8} | "
            "{name}:{function}:{line} - "
            "{message} | {extra}"
        )

        logger.add(
            self.config['log_file'],
            level=self.config['level'],
            format=file_format,
            rotation=self.config['max_file_size'],
            retention=f"{self.config['retention_days']} days",
            compression="zip" if self.config['compression'] else None,
            encoding="utf-8"
        )

    def _setup_error_logging(self):
        """Настройка логирования ошибок"""
        error_format = (
            "{time:YYYY-MM-DD HH:mm:ss} | "
            "{level: <8} | "
            "{name}:{function}:{line} - "
            "{message}"
        )

        logger.add(
            self.config['error_file'],
            level="ERROR",
            format=error_format,
            rotation="5 MB",
            retention="30 days",
            compression="zip" if self.config['compression'] else None,
            encoding="utf-8"
        )

    def _add_context_logging(self):
        """Добавление контекстной информации в логи"""
        def add_context(record):
            record["extra"]["timestamp"] = datetime.now().isoformat()
            record["extra"]["pid"] = os.getpid()

        logger.configure(patcher=add_context)

    def _console_filter(self, record):
        """Фильтр для консольного вывода"""
        if record["level"].name == "DEBUG" and self.config['level'] != "DEBUG":
            return False
        return True

    @staticmethod
    def get_logger(name: str = None):
        """Получение экземпляра логгера"""
        if name:
            return logger.bind(name=name)
        return logger


class StructuredLogger:
    """Структурированное логирование для компонентов запуска"""

    def __init__(self, component: str, run_id: str = None):
        """
        Инициализация структурированного логгера

        Args:
            component: Имя компонента
            run_id: ID запуска
        """
        self.component = component
        self.run_id = run_id
        self.logger = logger.bind(component=component, run_id=run_id)

    def info(self, message: str, **kwargs):
        """Информационное сообщение"""
        self.logger.bind(**kwargs).info(message)

    def warning(self, message: str, **kwargs):
        """Предупреждение"""
        self.logger.bind(**kwargs).warning(message)

    def error(self, message: str, **kwargs):
        """Ошибка"""
        self.logger.bind(**kwargs).error(message)

    def debug(self, message: str, **kwargs):
        """Отладочное сообщение"""
        self.logger.bind(**kwargs).debug(message)

    def log_ssh_connection(self, host: str, identity: str, success: bool, pooled: bool = False, error: str = None):
        """Логирование SSH подключения"""
        self.logger.bind(
            host=host,
            identity=identity,
            success=success,
            pooled=pooled,
            error=error
        ).info("SSH connection")

    def log_task_start(self, task: str, hosts: List[str]):
        """Логирование начала задачи"""
        self.logger.bind(task=task, hosts=hosts).info("Task started")

    def log_command_execution(self, task: str, host: str, exit_code: int, expected: int, duration: float):
        """Логирование выполнения команды"""
        self.logger.bind(
            task=task,
            host=host,
            exit_code=exit_code,
            expected=expected,
            success=exit_code == expected,
            duration=duration
        ).info("Command executed")

    def log_task_result(self, task: str, host: str, status: str, attempts: int, error: str = None):
        """Логирование итога задачи на хосте"""
        self.logger.bind(
            task=task,
            host=host,
            status=status,
            attempts=attempts,
            error=error
        ).info("Task finished")

    def log_run_completion(self, success: bool, duration: float, results_total: int, results_failed: int):
        """Логирование завершения запуска"""
        self.logger.bind(
            success=success,
            duration=duration,
            results_total=results_total,
            results_failed=results_failed
        ).info("Run completed")


class LogSink:
    """Приемник строк событий запуска"""

    def emit(self, line: str):
        raise NotImplementedError

    def emit_many(self, lines: Iterable[str]):
        for line in lines:
            self.emit(line)


class LoguruSink(LogSink):
    """Пишет строки событий в loguru"""

    def __init__(self, level: str = "INFO"):
        self.level = level
        self.logger = logger.bind(component="run")

    def emit(self, line: str):
        self.logger.log(self.level, line)


class ConsoleSink(LogSink):
    """Печатает строки событий в консоль rich и дублирует в loguru"""

    def __init__(self, console: Optional[Console] = None, forward_to_logger: bool = True):
        self.console = console or Console()
        self.forward = LoguruSink("DEBUG") if forward_to_logger else None

    def emit(self, line: str):
        self.console.print(escape(line), highlight=False)
        if self.forward:
            self.forward.emit(line)


class CallbackSink(LogSink):
    """Передает строки событий в произвольную функцию"""

    def __init__(self, callback: Callable[[str], Any]):
        self.callback = callback

    def emit(self, line: str):
        self.callback(line)


class MemorySink(LogSink):
    """Накапливает строки событий в списке"""

    def __init__(self):
        self.lines: List[str] = []

    def emit(self, line: str):
        self.lines.append(line)

    def clear(self):
        self.lines.clear()


class FanOutSink(LogSink):
    """Рассылает строки событий нескольким подписчикам"""

    def __init__(self, *sinks: LogSink):
        self.sinks: List[LogSink] = list(sinks)

    def subscribe(self, sink: LogSink):
        self.sinks.append(sink)

    def unsubscribe(self, sink: LogSink):
        if sink in self.sinks:
            self.sinks.remove(sink)

    def emit(self, line: str):
        for sink in list(self.sinks):
            try:
                sink.emit(line)
            except Exception as e:
                # упавший подписчик не должен прерывать рассылку
                logger.warning(f"Подписчик логов {sink!r} завершился с ошибкой: {e}")


def setup_logging(config: Optional[Union[Dict[str, Any], LoggingConfig]] = None) -> LoggerSetup:
    """
    Настройка системы логирования

    Args:
        config: Конфигурация логирования

    Returns:
        Экземпляр LoggerSetup
    """
    return LoggerSetup(config)


def get_structured_logger(component: str, run_id: str = None) -> StructuredLogger:
    """
    Получение структурированного логгера

    Args:
        component: Имя компонента
        run_id: ID запуска

    Returns:
        Экземпляр StructuredLogger
    """
    return StructuredLogger(component, run_id)
