"""Resolution of running processes into stable identities."""

import hashlib
from collections.abc import Callable
from typing import TypeVar

import psutil
import structlog

from procprio.config import HASH_SALT
from procprio.inspector import ProcessInspector
from procprio.models import ProcessIdentity, RunningProcess

log = structlog.get_logger()

T = TypeVar("T")

# Errors that mean the process is starting up or already gone.
TRANSIENT_ERRORS = (psutil.NoSuchProcess, psutil.ZombieProcess)


class IdentityResolutionError(Exception):
    """
    A process could not be resolved into an identity.

    ``transient`` marks failures that are expected to clear on their own,
    such as a process that exited mid-lookup or has not finished starting.
    """

    def __init__(self, pid: int, reason: str, transient: bool = False) -> None:
        super().__init__(f"pid {pid}: {reason}")
        self.pid = pid
        self.reason = reason
        self.transient = transient


def executable_hash(full_path: str) -> str:
    """Salted hash of a lower-cased executable path."""
    return hashlib.md5((HASH_SALT + full_path.lower()).encode("utf-8")).hexdigest()


class IdentityResolver:
    """Builds ProcessIdentity objects using a process inspector."""

    def __init__(self, inspector: ProcessInspector) -> None:
        self._inspector = inspector

    def resolve(self, process: RunningProcess) -> ProcessIdentity:
        """
        Resolve a running process.

        The executable path and owning users are required; failing to read
        either fails the whole resolution. Service names are looked up only
        for service host candidates and a failed lookup leaves them unset.

        Raises:
            IdentityResolutionError: If a required attribute is unavailable.
        """
        pid = process.pid
        full_path = self._read(pid, "executable path", self._inspector.executable_path)
        if not full_path:
            raise IdentityResolutionError(pid, "executable path not available yet", transient=True)

        user_ids = self._read(pid, "owning users", self._inspector.owning_user_ids)
        if not user_ids:
            raise IdentityResolutionError(pid, "no owning user reported")

        username = self._inspector.username(pid) if len(user_ids) == 1 else ""

        service_names = None
        if self._inspector.is_service_host(process.name):
            try:
                service_names = tuple(self._inspector.hosted_service_names(pid))
            except (psutil.Error, OSError) as e:
                log.warning("service_lookup_failed", pid=pid, error=str(e))

        return ProcessIdentity(
            pid=pid,
            executable_hash=executable_hash(full_path),
            short_name=process.name,
            full_path=full_path,
            owning_user_ids=frozenset(user_ids),
            username=username,
            hosted_service_names=service_names,
        )

    def resolve_parent(self, pid: int, parent_pid: int | None = None) -> ProcessIdentity | None:
        """
        Resolve the parent of a process.

        Args:
            pid: The child process.
            parent_pid: Parent pid if the caller already knows it.

        Returns:
            The parent identity, or None when the process has no live parent.

        Raises:
            IdentityResolutionError: If the parent exists but cannot be resolved.
        """
        if parent_pid is None:
            parent_pid = self._read(pid, "parent pid", self._inspector.parent_pid)
            if parent_pid is None:
                return None
        name = self._read(parent_pid, "process name", self._inspector.process_name)
        return self.resolve(RunningProcess(pid=parent_pid, name=name))

    @staticmethod
    def _read(pid: int, what: str, reader: Callable[[int], T]) -> T:
        try:
            return reader(pid)
        except TRANSIENT_ERRORS as e:
            raise IdentityResolutionError(pid, f"{what}: {e}", transient=True) from e
        except (psutil.Error, OSError) as e:
            raise IdentityResolutionError(pid, f"{what}: {e}") from e
