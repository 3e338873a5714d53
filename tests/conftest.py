"""Shared fixtures: an in-memory rule store and fake OS collaborators."""

from dataclasses import dataclass, field

import psutil
import pytest

from procprio.models import Priority, RunningProcess
from procprio.monitor import PriorityMonitor
from procprio.store import RuleStore


@dataclass
class FakeProcess:
    """A process known to FakeInspector."""

    name: str
    path: str
    users: frozenset[str] = frozenset({"1000"})
    username: str = "alice"
    parent: int | None = None
    services: list[str] | None = None
    priority: Priority = Priority.NORMAL
    affinity: list[int] | None = None
    exe_error: Exception | None = None
    set_error: Exception | None = None
    history: list[Priority] = field(default_factory=list)


class FakeInspector:
    """In-memory stand-in for ProcessInspector."""

    def __init__(self) -> None:
        self.processes: dict[int, FakeProcess] = {}

    def add(self, pid: int, name: str, path: str, **kwargs) -> FakeProcess:
        process = FakeProcess(name=name, path=path, **kwargs)
        self.processes[pid] = process
        return process

    def remove(self, pid: int) -> None:
        del self.processes[pid]

    def _get(self, pid: int) -> FakeProcess:
        if pid not in self.processes:
            raise psutil.NoSuchProcess(pid)
        return self.processes[pid]

    def list_processes(self) -> list[RunningProcess]:
        return [RunningProcess(pid=pid, name=p.name) for pid, p in self.processes.items()]

    def process_name(self, pid: int) -> str:
        return self._get(pid).name

    def executable_path(self, pid: int) -> str:
        process = self._get(pid)
        if process.exe_error is not None:
            raise process.exe_error
        return process.path

    def owning_user_ids(self, pid: int) -> frozenset[str]:
        return self._get(pid).users

    def username(self, pid: int) -> str:
        return self._get(pid).username

    def parent_pid(self, pid: int) -> int | None:
        parent = self._get(pid).parent
        return parent if parent in self.processes else None

    def is_service_host(self, name: str) -> bool:
        return name == "svchost"

    def hosted_service_names(self, pid: int) -> list[str]:
        services = self._get(pid).services
        if services is None:
            raise psutil.AccessDenied(pid)
        return list(services)

    def get_priority(self, pid: int) -> Priority:
        return self._get(pid).priority

    def set_priority(self, pid: int, priority: Priority) -> None:
        process = self._get(pid)
        if process.set_error is not None:
            raise process.set_error
        process.priority = priority.os_class
        process.history.append(priority.os_class)

    def set_affinity(self, pid: int, cpus: list[int]) -> None:
        self._get(pid).affinity = list(cpus)


class RecordingLauncher:
    """Launcher that records commands instead of running them."""

    def __init__(self) -> None:
        self.launched: list[str] = []

    def launch(self, command: str) -> bool:
        self.launched.append(command)
        return True


@pytest.fixture
def store():
    rule_store = RuleStore(":memory:")
    yield rule_store
    rule_store.close()


@pytest.fixture
def inspector() -> FakeInspector:
    return FakeInspector()


@pytest.fixture
def launcher() -> RecordingLauncher:
    return RecordingLauncher()


@pytest.fixture
def monitor(store, inspector, launcher) -> PriorityMonitor:
    return PriorityMonitor(store, inspector=inspector, launcher=launcher, poll_rate=0.1)
