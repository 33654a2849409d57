"""
Тесты для разрешения порядка задач
"""
import pytest

from sshdeploy.exceptions import (
    ConfigurationError,
    DependencyCycleError,
    TaskNotFoundError,
    UnknownDependencyError,
)
from sshdeploy.models.deploy_models import Task
from sshdeploy.runner.dependency_resolver import find_cycle, resolve, resolve_from_root


def make_task(name, *depends_on, lib=False):
    return Task(name=name, cmd=f"echo {name}", depends_on=list(depends_on), lib=lib)


def names(tasks):
    return [task.name for task in tasks]


def assert_topological(ordered):
    position = {task.name: index for index, task in enumerate(ordered)}
    for task in ordered:
        for dep in task.depends_on:
            assert position[dep] < position[task.name], f"{dep} должна идти раньше {task.name}"


class TestResolve:
    """Тесты для resolve"""

    def test_chain(self):
        """C зависит от B, B от A"""
        tasks = [make_task("C", "B"), make_task("A"), make_task("B", "A")]

        assert names(resolve(tasks)) == ["A", "B", "C"]

    def test_independent_tasks_keep_input_order(self):
        tasks = [make_task("deploy"), make_task("build"), make_task("notify")]

        assert names(resolve(tasks)) == ["deploy", "build", "notify"]

    def test_tie_break_by_input_position(self):
        """Готовые одновременно задачи идут в порядке входного списка"""
        tasks = [
            make_task("root"),
            make_task("z", "root"),
            make_task("a", "root"),
            make_task("m", "root"),
        ]

        assert names(resolve(tasks)) == ["root", "z", "a", "m"]

    def test_diamond(self):
        tasks = [
            make_task("publish", "test", "lint"),
            make_task("lint", "build"),
            make_task("test", "build"),
            make_task("build"),
        ]

        ordered = resolve(tasks)

        assert names(ordered) == ["build", "lint", "test", "publish"]
        assert_topological(ordered)

    def test_result_is_permutation(self):
        tasks = [make_task(f"t{i}", *(f"t{j}" for j in range(i) if (i + j) % 3 == 0)) for i in range(12)]

        ordered = resolve(tasks)

        assert sorted(names(ordered)) == sorted(names(tasks))
        assert_topological(ordered)

    def test_deterministic(self):
        tasks = [make_task("b", "a"), make_task("c"), make_task("a"), make_task("d", "c", "a")]

        assert names(resolve(tasks)) == names(resolve(list(tasks)))

    def test_input_not_modified(self):
        tasks = [make_task("B", "A"), make_task("A")]

        resolve(tasks)

        assert names(tasks) == ["B", "A"]

    def test_empty(self):
        assert resolve([]) == []

    def test_direct_cycle(self):
        """X зависит от Y, Y от X"""
        tasks = [make_task("X", "Y"), make_task("Y", "X")]

        with pytest.raises(DependencyCycleError) as exc_info:
            resolve(tasks)

        assert exc_info.value.cycle[0] == exc_info.value.cycle[-1]
        assert set(exc_info.value.cycle) == {"X", "Y"}
        assert "circular dependency detected" in str(exc_info.value)

    def test_transitive_cycle(self):
        tasks = [make_task("ok"), make_task("a", "c"), make_task("b", "a"), make_task("c", "b")]

        with pytest.raises(DependencyCycleError) as exc_info:
            resolve(tasks)

        assert set(exc_info.value.cycle) == {"a", "b", "c"}

    def test_self_dependency(self):
        with pytest.raises(DependencyCycleError):
            resolve([make_task("loop", "loop")])

    def test_unknown_dependency(self):
        with pytest.raises(UnknownDependencyError) as exc_info:
            resolve([make_task("deploy", "build")])

        assert exc_info.value.task == "deploy"
        assert exc_info.value.dependency == "build"

    def test_duplicate_names(self):
        with pytest.raises(ConfigurationError):
            resolve([make_task("a"), make_task("a")])


class TestResolveFromRoot:
    """Тесты для resolve_from_root"""

    def test_closure_only(self):
        tasks = [
            make_task("A"),
            make_task("B", "A"),
            make_task("unrelated"),
            make_task("C", "B"),
            make_task("D", "C"),
        ]

        assert names(resolve_from_root(tasks, "C")) == ["A", "B", "C"]

    def test_root_without_dependencies(self):
        tasks = [make_task("A"), make_task("B", "A")]

        assert names(resolve_from_root(tasks, "A")) == ["A"]

    def test_includes_lib_dependencies(self):
        tasks = [make_task("helper", lib=True), make_task("deploy", "helper")]

        assert names(resolve_from_root(tasks, "deploy")) == ["helper", "deploy"]

    def test_shared_dependency_once(self):
        tasks = [
            make_task("base"),
            make_task("left", "base"),
            make_task("right", "base"),
            make_task("top", "left", "right"),
        ]

        assert names(resolve_from_root(tasks, "top")) == ["base", "left", "right", "top"]

    def test_root_not_found(self):
        with pytest.raises(TaskNotFoundError) as exc_info:
            resolve_from_root([make_task("A")], "missing")

        assert "task 'missing' not found" in str(exc_info.value)

    def test_missing_dependency(self):
        with pytest.raises(TaskNotFoundError):
            resolve_from_root([make_task("A", "ghost")], "A")

    def test_cycle_in_closure(self):
        tasks = [make_task("X", "Y"), make_task("Y", "X")]

        with pytest.raises(DependencyCycleError) as exc_info:
            resolve_from_root(tasks, "X")

        assert exc_info.value.cycle == ["X", "Y", "X"]

    def test_cycle_outside_closure_ignored(self):
        tasks = [make_task("A"), make_task("X", "Y"), make_task("Y", "X")]

        assert names(resolve_from_root(tasks, "A")) == ["A"]


class TestFindCycle:
    """Тесты для find_cycle"""

    def test_no_cycle(self):
        assert find_cycle([make_task("A"), make_task("B", "A")]) is None

    def test_cycle_path(self):
        cycle = find_cycle([make_task("a", "b"), make_task("b", "c"), make_task("c", "a")])

        assert cycle == ["a", "b", "c", "a"]

    def test_unknown_dependency_ignored(self):
        assert find_cycle([make_task("a", "ghost")]) is None
