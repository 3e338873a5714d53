"""Process inspection backed by psutil."""

import psutil

from procprio.config import SERVICE_HOST_NAMES
from procprio.models import Priority, RunningProcess

# Nice values used for each priority class on POSIX systems.
POSIX_NICE = {
    Priority.IDLE: 19,
    Priority.BELOW_NORMAL: 10,
    Priority.NORMAL: 0,
    Priority.ABOVE_NORMAL: -5,
    Priority.HIGH: -10,
}

if psutil.WINDOWS:
    WINDOWS_CLASSES = {
        Priority.IDLE: psutil.IDLE_PRIORITY_CLASS,
        Priority.BELOW_NORMAL: psutil.BELOW_NORMAL_PRIORITY_CLASS,
        Priority.NORMAL: psutil.NORMAL_PRIORITY_CLASS,
        Priority.ABOVE_NORMAL: psutil.ABOVE_NORMAL_PRIORITY_CLASS,
        Priority.HIGH: psutil.HIGH_PRIORITY_CLASS,
    }
else:
    WINDOWS_CLASSES = {}


def short_name(name: str) -> str:
    """Strip the executable extension from a process name."""
    if name.lower().endswith(".exe"):
        return name[:-4]
    return name


def priority_from_nice(nice: int) -> Priority:
    """Map a POSIX nice value onto the nearest priority class."""
    if nice >= 15:
        return Priority.IDLE
    if nice >= 1:
        return Priority.BELOW_NORMAL
    if nice == 0:
        return Priority.NORMAL
    if nice > -10:
        return Priority.ABOVE_NORMAL
    return Priority.HIGH


def normalize_service_name(name: str) -> str:
    """
    Collapse per-user service instances onto one name.

    Names such as ``CDPUserSvc_3f2a1`` are cut after the first underscore so
    every instance shares a single rule.
    """
    if "_" in name:
        return name[: name.index("_") + 1]
    return name


class ProcessInspector:
    """
    Reads process attributes and changes priority classes through psutil.

    Every method takes a pid and raises the psutil exception that the lookup
    produced (NoSuchProcess, ZombieProcess, AccessDenied). Callers decide
    which of them are fatal for the operation at hand.
    """

    def __init__(self, service_host_names: frozenset[str] = SERVICE_HOST_NAMES) -> None:
        self._service_host_names = service_host_names

    def list_processes(self) -> list[RunningProcess]:
        """Enumerate all running processes."""
        processes: list[RunningProcess] = []
        for proc in psutil.process_iter(attrs=["name"]):
            name = proc.info.get("name")
            if name is None:
                # Access denied or process vanished while reading the name.
                continue
            processes.append(RunningProcess(pid=proc.pid, name=short_name(name)))
        return processes

    def process_name(self, pid: int) -> str:
        """Short name of a single process."""
        return short_name(psutil.Process(pid).name())

    def executable_path(self, pid: int) -> str:
        """Absolute path to the executable; empty while a process starts up."""
        return psutil.Process(pid).exe()

    def owning_user_ids(self, pid: int) -> frozenset[str]:
        """
        All user identifiers the process runs under.

        POSIX reports the distinct real, effective and saved uids. On Windows
        psutil exposes no SID, so the identifier is the ``DOMAIN\\user``
        account name; renaming an account orphans its username rules.
        """
        proc = psutil.Process(pid)
        if psutil.WINDOWS:
            return frozenset({proc.username()})
        return frozenset(str(uid) for uid in proc.uids())

    def username(self, pid: int) -> str:
        """Account name of the process owner, or an empty string."""
        try:
            return psutil.Process(pid).username()
        except (psutil.Error, KeyError):
            return ""

    def parent_pid(self, pid: int) -> int | None:
        """Pid of the parent process, if it is still running."""
        ppid = psutil.Process(pid).ppid()
        if not ppid or not psutil.pid_exists(ppid):
            return None
        return ppid

    def is_service_host(self, name: str) -> bool:
        """Whether a process with this short name may host OS services."""
        return name.lower() in self._service_host_names

    def hosted_service_names(self, pid: int) -> list[str]:
        """Names of the OS services running inside the process."""
        if not psutil.WINDOWS:
            return []
        names = []
        for service in psutil.win_service_iter():
            if service.pid() == pid:
                names.append(normalize_service_name(service.name()))
        return names

    def get_priority(self, pid: int) -> Priority:
        """Current priority class of the process."""
        value = psutil.Process(pid).nice()
        if psutil.WINDOWS:
            for priority, os_value in WINDOWS_CLASSES.items():
                if os_value == value:
                    return priority
            # Realtime is reported as High.
            return Priority.HIGH
        return priority_from_nice(value)

    def set_priority(self, pid: int, priority: Priority) -> None:
        """Write an OS priority class to the process."""
        os_class = priority.os_class
        if os_class is None:
            raise ValueError(f"{priority.name} is not an OS priority class")
        value = WINDOWS_CLASSES[os_class] if psutil.WINDOWS else POSIX_NICE[os_class]
        psutil.Process(pid).nice(value)

    def set_affinity(self, pid: int, cpus: list[int]) -> None:
        """Restrict the process to the given logical CPUs."""
        psutil.Process(pid).cpu_affinity(cpus)
