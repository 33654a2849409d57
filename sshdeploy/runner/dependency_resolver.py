"""
Разрешение порядка выполнения задач по зависимостям depends_on

Порядок строится алгоритмом Кана. Когда готовы несколько задач сразу,
первой идет та, что раньше во входном списке, поэтому результат
детерминирован.
"""
import heapq
from typing import Dict, Iterable, List, Optional, Set

from loguru import logger

from ..exceptions import (
    ConfigurationError,
    DependencyCycleError,
    TaskNotFoundError,
    UnknownDependencyError,
)
from ..models.deploy_models import Task


def _index_tasks(tasks: List[Task]) -> Dict[str, Task]:
    task_map: Dict[str, Task] = {}
    for task in tasks:
        if task.name in task_map:
            raise ConfigurationError(f"duplicate task name '{task.name}'")
        task_map[task.name] = task
    return task_map


def resolve(tasks: Iterable[Task]) -> List[Task]:
    """
    Упорядочить задачи так, чтобы зависимости шли раньше зависимых

    Args:
        tasks: Набор задач с уникальными именами

    Returns:
        Новый список задач в порядке выполнения

    Raises:
        UnknownDependencyError: depends_on ссылается на задачу вне набора
        DependencyCycleError: в зависимостях есть цикл
    """
    tasks = list(tasks)
    task_map = _index_tasks(tasks)
    position = {task.name: index for index, task in enumerate(tasks)}

    # dependency -> dependents
    dependents: Dict[str, List[str]] = {task.name: [] for task in tasks}
    in_degree: Dict[str, int] = {}

    for task in tasks:
        in_degree[task.name] = len(task.depends_on)
        for dep in task.depends_on:
            if dep not in task_map:
                raise UnknownDependencyError(task.name, dep)
            dependents[dep].append(task.name)

    ready = [position[name] for name, degree in in_degree.items() if degree == 0]
    heapq.heapify(ready)

    ordered: List[Task] = []
    while ready:
        task = tasks[heapq.heappop(ready)]
        ordered.append(task)

        for name in dependents[task.name]:
            in_degree[name] -= 1
            if in_degree[name] == 0:
                heapq.heappush(ready, position[name])

    if len(ordered) != len(tasks):
        stuck = [task.name for task in tasks if in_degree[task.name] > 0]
        logger.debug("Зависимости задач образуют цикл", stuck=stuck)
        raise DependencyCycleError(find_cycle(tasks) or stuck)

    return ordered


def resolve_from_root(tasks: Iterable[Task], root: str) -> List[Task]:
    """
    Выбрать задачу root с транзитивными зависимостями и упорядочить их

    Обход в глубину различает завершенные вершины и вершины в процессе
    обхода: повторный вход в вершину из текущего пути означает цикл.

    Raises:
        TaskNotFoundError: root или одна из зависимостей не найдена
        DependencyCycleError: зависимости root образуют цикл
    """
    tasks = list(tasks)
    task_map = _index_tasks(tasks)
    if root not in task_map:
        raise TaskNotFoundError(root)

    visited: Set[str] = set()
    in_progress: List[str] = []

    def collect(name: str):
        if name in visited:
            return
        if name in in_progress:
            start = in_progress.index(name)
            raise DependencyCycleError(in_progress[start:] + [name])
        task = task_map.get(name)
        if task is None:
            raise TaskNotFoundError(name)

        in_progress.append(name)
        for dep in task.depends_on:
            collect(dep)
        in_progress.pop()
        visited.add(name)

    collect(root)

    closure = [task for task in tasks if task.name in visited]
    return resolve(closure)


def find_cycle(tasks: Iterable[Task]) -> Optional[List[str]]:
    """
    Найти цикл зависимостей

    Returns:
        Путь цикла вида [a, b, a] или None. Ссылки на неизвестные
        задачи игнорируются.
    """
    graph = {task.name: task.depends_on for task in tasks}
    visited: Set[str] = set()
    stack: List[str] = []
    on_stack: Set[str] = set()

    def dfs(name: str) -> Optional[List[str]]:
        visited.add(name)
        stack.append(name)
        on_stack.add(name)
        for dep in graph.get(name, ()):
            if dep not in graph:
                continue
            if dep in on_stack:
                return stack[stack.index(dep):] + [dep]
            if dep not in visited:
                cycle = dfs(dep)
                if cycle:
                    return cycle
        stack.pop()
        on_stack.discard(name)
        return None

    for name in graph:
        if name not in visited:
            cycle = dfs(name)
            if cycle:
                return cycle
    return None
