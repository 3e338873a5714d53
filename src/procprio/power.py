"""Power mode switching driven by high-power processes."""

from enum import Enum

import structlog

from procprio.launcher import ProcessLauncher

log = structlog.get_logger()


class PowerMode(Enum):
    """Power modes the controller can put the machine in."""

    NORMAL = "normal"
    HIGH_POWER = "high_power"


class PowerModeController:
    """
    Runs the high-power script while any high-power process is alive.

    The controller owns the set of high-power pids. The high-power script is
    launched when the set goes from empty to non-empty and the low-power
    script when it becomes empty again; a transition into the current mode
    launches nothing. Without both scripts configured the set is still
    maintained but no mode changes happen. The controller starts in NORMAL,
    so starting up launches nothing.
    """

    def __init__(
        self,
        launcher: ProcessLauncher,
        low_script: str | None = None,
        high_script: str | None = None,
    ) -> None:
        self._launcher = launcher
        self._low_script: str | None = None
        self._high_script: str | None = None
        self._mode = PowerMode.NORMAL
        self._pids: set[int] = set()
        self.configure(low_script, high_script)

    @property
    def configured(self) -> bool:
        """Whether both power scripts are set."""
        return bool(self._low_script and self._high_script)

    @property
    def mode(self) -> PowerMode:
        """Current power mode."""
        return self._mode

    @property
    def high_power_pids(self) -> frozenset[int]:
        return frozenset(self._pids)

    def configure(self, low_script: str | None, high_script: str | None) -> None:
        """Set the script paths; empty values leave power scripts unconfigured."""
        self._low_script = low_script or None
        self._high_script = high_script or None
        if self.configured:
            log.info("power_scripts_configured", low=self._low_script, high=self._high_script)
        else:
            log.info("power_scripts_not_configured")

    def add(self, pid: int) -> None:
        """Mark a process as high-power, entering HIGH_POWER if needed."""
        self._pids.add(pid)
        self._switch(PowerMode.HIGH_POWER)

    def discard(self, pid: int) -> None:
        """Forget a high-power process, entering NORMAL if it was the last one."""
        if pid not in self._pids:
            return
        self._pids.remove(pid)
        if not self._pids:
            self._switch(PowerMode.NORMAL)

    def clear(self) -> None:
        """Drop all high-power pids without changing mode."""
        self._pids.clear()

    def ensure_normal(self) -> None:
        """Enter NORMAL if no high-power process is known."""
        if not self._pids:
            self._switch(PowerMode.NORMAL)

    def _switch(self, mode: PowerMode) -> None:
        if not self.configured or self._mode is mode:
            return
        script = self._high_script if mode is PowerMode.HIGH_POWER else self._low_script
        log.info("power_mode_change", mode=mode.value, script=script)
        self._mode = mode
        self._launcher.launch(script)
