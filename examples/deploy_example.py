"""
Пример программного запуска развертывания
"""
import asyncio
from pathlib import Path

from sshdeploy.config.deploy_config import DeployConfig
from sshdeploy.runner.orchestrator import Orchestrator
from sshdeploy.utils.logger import ConsoleSink, FanOutSink, MemorySink, setup_logging


async def plan_example(config: DeployConfig):
    """Порядок задач без подключения к серверам"""
    print("=== План выполнения ===")

    orchestrator = Orchestrator(config)
    hosts, tasks = orchestrator.plan("all", include_lib=True)

    print(f"Хосты: {', '.join(hosts)}")
    for i, task in enumerate(tasks, 1):
        deps = ", ".join(task.depends_on) or "-"
        print(f"{i}. {task.name} (зависит от: {deps})")


async def pooled_deploy_example(config: DeployConfig):
    """Два запуска подряд через пул соединений"""
    print("\n=== Развертывание через пул ===")

    memory = MemorySink()
    orchestrator = Orchestrator(config, sink=FanOutSink(ConsoleSink(), memory))
    orchestrator.enable_pooling()

    try:
        report = await orchestrator.run("all")
        print(f"Первый запуск: {'✓' if report.success else '✗'} ({report.get_duration():.2f}с)")

        # соединения берутся из пула
        report = await orchestrator.run("web1", task_name="status")
        print(f"Проверка статуса: {'✓' if report.success else '✗'}")

        print(f"Статистика пула: {orchestrator.pool_stats()}")
        print(f"Событий запуска: {len(memory.lines)}")
    finally:
        orchestrator.close()


async def main():
    """Главная функция"""
    config = DeployConfig.from_yaml(str(Path(__file__).parent / "deploy.yaml"))
    setup_logging(config.settings.logging)

    await plan_example(config)
    await pooled_deploy_example(config)


if __name__ == "__main__":
    asyncio.run(main())
