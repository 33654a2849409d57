"""
CLI интерфейс SSH Deploy.

Команды запуска задач развертывания, просмотра плана выполнения
и списка настроенных хостов.
"""

import asyncio
import signal
import sys
import threading
from pathlib import Path
from typing import List, Optional

import typer
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from . import __version__
from .config.deploy_config import DeployConfig, find_config_file
from .exceptions import ConfigurationError, DeployError
from .models.command_result import ExecutionStatus
from .models.deploy_models import Task
from .models.run_report import RunReport
from .runner.orchestrator import Orchestrator
from .utils.logger import ConsoleSink, setup_logging

console = Console()
app = typer.Typer(
    name="sshdeploy",
    help="Выполнение задач развертывания на удаленных серверах по SSH",
    add_completion=False,
    rich_markup_mode="rich"
)

STATUS_STYLES = {
    ExecutionStatus.COMPLETED: "[green]✓ Успех[/green]",
    ExecutionStatus.FAILED: "[red]✗ Ошибка[/red]",
    ExecutionStatus.SKIPPED: "[yellow]⏭ Пропущено[/yellow]",
    ExecutionStatus.CANCELLED: "[yellow]⏹ Отменено[/yellow]",
}


def _load_config(config_path: Optional[str]) -> DeployConfig:
    """Загрузка конфигурации из указанного файла или deploy.yaml/deploy.yml."""
    path = Path(config_path) if config_path else find_config_file()
    return DeployConfig.from_yaml(str(path))


def _error_panel(title: str, error: Exception):
    console.print(Panel(
        f"[red]{title}:[/red] {escape(str(error))}",
        title="[red]Ошибка[/red]",
        border_style="red"
    ))


async def _confirm_retry(task: Task, host_name: str) -> bool:
    """
    Запрос повтора упавшей задачи у пользователя.

    Ввод читается в daemon потоке, поэтому обработчик Ctrl+C в event loop
    срабатывает и во время вопроса, а брошенный ввод не держит выход.
    """
    loop = asyncio.get_running_loop()
    answer = loop.create_future()

    def settle(value: bool):
        if not answer.done():
            answer.set_result(value)

    def ask():
        try:
            value = Confirm.ask(
                f"Задача [cyan]{task.name}[/cyan] на {host_name} завершилась с ошибкой. Повторить?",
                default=False,
                console=console
            )
        except EOFError:
            value = False
        try:
            loop.call_soon_threadsafe(settle, value)
        except RuntimeError:
            logger.debug("Ответ на запрос повтора получен после завершения запуска")

    threading.Thread(target=ask, name="retry-prompt", daemon=True).start()
    return await answer


def _install_cancel_handler(cancel_event: asyncio.Event):
    """Ctrl+C останавливает запуск после текущей команды."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
    except (NotImplementedError, RuntimeError) as e:
        # Windows или не главный поток
        logger.debug(f"Обработчик SIGINT не установлен: {e}")


@app.command()
def deploy(
    host: Optional[str] = typer.Argument(None, help="Имя хоста или all"),
    task: Optional[str] = typer.Option(
        None,
        "--task", "-t",
        help="Выполнить только эту задачу и ее зависимости"
    ),
    include_lib: bool = typer.Option(
        False,
        "--include-lib",
        help="Включить lib задачи"
    ),
    pool: bool = typer.Option(
        False,
        "--pool",
        help="Использовать пул SSH соединений"
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Таймаут каждой команды в секундах"
    ),
    debug: bool = typer.Option(
        False,
        "--debug", "-d",
        help="Подробный вывод команд"
    ),
    config: Optional[str] = typer.Option(
        None,
        "--config", "-c",
        help="Путь к файлу конфигурации (по умолчанию deploy.yaml или deploy.yml)"
    ),
    no_retry_prompt: bool = typer.Option(
        False,
        "--no-retry-prompt",
        help="Не предлагать повтор упавших задач"
    )
):
    """Выполнить задачи развертывания на хостах."""
    try:
        deploy_config = _load_config(config)
    except ConfigurationError as e:
        _error_panel("Ошибка конфигурации", e)
        raise typer.Exit(1)

    logging_config = deploy_config.settings.logging
    if debug:
        logging_config = logging_config.model_copy(update={'level': 'DEBUG'})
    setup_logging(logging_config)

    orchestrator = Orchestrator(
        deploy_config,
        sink=ConsoleSink(console),
        retry_handler=None if no_retry_prompt else _confirm_retry
    )

    async def _deploy() -> RunReport:
        cancel_event = asyncio.Event()
        _install_cancel_handler(cancel_event)
        if pool:
            orchestrator.enable_pooling()
        try:
            return await orchestrator.run(
                host,
                task_name=task,
                include_lib=include_lib,
                debug=debug,
                timeout=timeout,
                cancel_event=cancel_event
            )
        finally:
            orchestrator.close()

    try:
        report = asyncio.run(_deploy())
    except ConfigurationError as e:
        _error_panel("Ошибка конфигурации", e)
        raise typer.Exit(1)
    except DeployError as e:
        _error_panel("Ошибка выполнения", e)
        raise typer.Exit(1)

    _display_report(report)
    if not report.success:
        raise typer.Exit(1)


@app.command()
def plan(
    host: Optional[str] = typer.Argument(None, help="Имя хоста или all"),
    task: Optional[str] = typer.Option(
        None,
        "--task", "-t",
        help="Показать план только для этой задачи"
    ),
    include_lib: bool = typer.Option(
        False,
        "--include-lib",
        help="Включить lib задачи"
    ),
    config: Optional[str] = typer.Option(
        None,
        "--config", "-c",
        help="Путь к файлу конфигурации"
    )
):
    """Показать порядок выполнения задач без подключения к хостам."""
    try:
        deploy_config = _load_config(config)
        orchestrator = Orchestrator(deploy_config)
        selected_hosts = orchestrator.select_hosts(host) if host else []
        tasks = orchestrator.resolve_tasks(task, include_lib)
    except ConfigurationError as e:
        _error_panel("Ошибка конфигурации", e)
        raise typer.Exit(1)

    plan_table = Table(title=f"[bold blue]План выполнения {escape(deploy_config.appname)}[/bold blue]")
    plan_table.add_column("№", style="dim", width=3)
    plan_table.add_column("Задача", style="cyan")
    plan_table.add_column("Зависит от", style="white")
    plan_table.add_column("Команда", style="white")

    for i, t in enumerate(tasks, 1):
        name = f"{t.name} [dim](lib)[/dim]" if t.lib else t.name
        plan_table.add_row(str(i), name, ", ".join(t.depends_on) or "-", escape(t.cmd))

    console.print(plan_table)
    if selected_hosts:
        console.print(f"[bold]Хосты:[/bold] {', '.join(selected_hosts)}")
    else:
        console.print("[dim]Хосты не выбраны[/dim]")


@app.command()
def hosts(
    config: Optional[str] = typer.Option(
        None,
        "--config", "-c",
        help="Путь к файлу конфигурации"
    )
):
    """Показать настроенные хосты."""
    try:
        deploy_config = _load_config(config)
    except ConfigurationError as e:
        _error_panel("Ошибка конфигурации", e)
        raise typer.Exit(1)

    hosts_table = Table(title="[bold green]Хосты[/bold green]")
    hosts_table.add_column("Имя", style="cyan")
    hosts_table.add_column("Адрес", style="white")
    hosts_table.add_column("Порт", style="dim")

    for info in deploy_config.get_hosts_info():
        hosts_table.add_row(info['name'], info['identity'], str(info['port']))

    console.print(hosts_table)


@app.command()
def version():
    """Показать версию."""
    console.print(f"sshdeploy {__version__}")


def _display_report(report: RunReport):
    """Итоговая таблица запуска."""
    results_table = Table(title=f"[bold blue]Результаты запуска {report.run_id}[/bold blue]")
    results_table.add_column("Задача", style="cyan")
    results_table.add_column("Хост", style="white")
    results_table.add_column("Статус", style="white")
    results_table.add_column("Код", style="dim")
    results_table.add_column("Попытки", style="dim")
    results_table.add_column("Время", style="green")

    for result in report.results:
        results_table.add_row(
            result.task,
            result.host,
            STATUS_STYLES.get(result.status, result.status.value),
            "-" if result.exit_code is None else str(result.exit_code),
            str(result.attempts),
            f"{result.duration:.1f}с"
        )

    console.print(results_table)

    failed = len(report.failed_results())
    duration = report.get_duration() or 0.0
    if report.cancelled:
        console.print(Panel(
            f"[yellow]Запуск отменен[/yellow]\n"
            f"Выполнено результатов: {len(report.results)}\n"
            f"Время выполнения: {duration:.2f}с",
            title="[yellow]Отмена[/yellow]",
            border_style="yellow"
        ))
    elif failed:
        console.print(Panel(
            f"[red]✗ Запуск завершен с ошибками[/red]\n"
            f"Неуспешных результатов: {failed}/{len(report.results)}\n"
            f"Время выполнения: {duration:.2f}с",
            title="[red]Ошибка[/red]",
            border_style="red"
        ))
    else:
        console.print(Panel(
            f"[green]✓ Все задачи выполнены успешно![/green]\n"
            f"Хостов: {len(report.hosts)}, задач: {len(report.tasks)}\n"
            f"Время выполнения: {duration:.2f}с",
            title="[green]Успех[/green]",
            border_style="green"
        ))


def _with_default_command(args: List[str]) -> List[str]:
    """Краткая форма: `sshdeploy web1 -t restart` равна `sshdeploy deploy web1 -t restart`."""
    commands = {info.name or info.callback.__name__ for info in app.registered_commands}
    if args and not args[0].startswith("-") and args[0] not in commands:
        return ["deploy", *args]
    return list(args)


def main():
    """Главная точка входа для CLI."""
    app(args=_with_default_command(sys.argv[1:]))


if __name__ == "__main__":
    main()
