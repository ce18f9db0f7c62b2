"""scsi_debug provisioning and sg node discovery.

Environment setup around a run: (re)load the ``scsi_debug`` module with a
slow tape-like target, find the ``/dev/sgN`` node it created, and make it
accessible.  Nothing here runs once the workload has started.

Discovery tries three sources in order: ``lsscsi`` output, the model
string under ``/sys/class/scsi_generic``, and the host tuple listed in
``/proc/scsi/scsi`` matched against sysfs link targets.
"""

from __future__ import annotations

import os
import re
import shutil
import subprocess
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

import structlog

logger = structlog.get_logger(__name__)

MAX_SG_NODES = 32
SCSI_DEBUG_MODEL = "scsi_debug"

_HOST_RE = re.compile(r"Host:\s*scsi(\d+)\s+Channel:\s*(\d+)\s+Id:\s*(\d+)\s+Lun:\s*(\d+)")


class SetupError(Exception):
    """Environment setup failed; the run must not start."""


class DeviceNotFoundError(SetupError):
    """No sg node backed by scsi_debug could be found."""


class ProvisioningError(SetupError):
    """The kernel module could not be loaded."""


@dataclass(frozen=True)
class SystemPaths:
    """Filesystem roots consulted during discovery (overridable in tests)."""

    sysfs_sg: Path = Path("/sys/class/scsi_generic")
    proc_scsi: Path = Path("/proc/scsi/scsi")
    dev: Path = Path("/dev")


@dataclass
class DeviceLocator:
    """Find the sg node that scsi_debug registered.

    Attributes:
        paths: Roots for sysfs, procfs and /dev.
        tried: Discovery methods attempted by the last :meth:`discover` call.
    """

    paths: SystemPaths = field(default_factory=SystemPaths)
    tried: list[str] = field(default_factory=list)

    def discover(self) -> Path:
        """Return the first existing sg node found by any method.

        Raises:
            DeviceNotFoundError: If every method comes up empty.
        """
        self.tried = []
        methods = (
            ("lsscsi", self._from_lsscsi),
            (str(self.paths.sysfs_sg), self._from_sysfs_model),
            (str(self.paths.proc_scsi), self._from_proc_scsi),
        )
        for name, method in methods:
            self.tried.append(name)
            node = method()
            if node is not None and node.exists():
                logger.debug("device.discovered", node=str(node), method=name)
                return node
        msg = f"Could not find sg device for {SCSI_DEBUG_MODEL} (tried: {', '.join(self.tried)})"
        raise DeviceNotFoundError(msg)

    def _node(self, index: int | str) -> Path:
        return self.paths.dev / f"sg{index}"

    def _from_lsscsi(self) -> Path | None:
        if shutil.which("lsscsi") is None:
            return None
        try:
            proc = subprocess.run(
                ["lsscsi", "--generic"],
                capture_output=True,
                text=True,
                check=False,
                timeout=10,
            )
        except (OSError, subprocess.SubprocessError):
            return None
        return parse_lsscsi(proc.stdout)

    def _from_sysfs_model(self) -> Path | None:
        for index in range(MAX_SG_NODES):
            model_file = self.paths.sysfs_sg / f"sg{index}" / "device" / "model"
            try:
                model = model_file.read_text(encoding="utf-8").strip()
            except OSError:
                continue
            if SCSI_DEBUG_MODEL in model:
                node = self._node(index)
                if node.exists():
                    return node
        return None

    def _from_proc_scsi(self) -> Path | None:
        try:
            listing = self.paths.proc_scsi.read_text(encoding="utf-8")
        except OSError:
            return None
        address = parse_proc_scsi(listing)
        if address is None:
            return None
        for index in range(MAX_SG_NODES):
            link = self.paths.sysfs_sg / f"sg{index}"
            try:
                target = os.readlink(link)
            except OSError:
                continue
            if address in target:
                node = self._node(index)
                if node.exists():
                    return node
        return None


def parse_lsscsi(output: str) -> Path | None:
    """Pick the sg node from the first ``lsscsi`` line mentioning scsi_debug."""
    for line in output.splitlines():
        if SCSI_DEBUG_MODEL not in line:
            continue
        fields = line.split()
        if fields and fields[-1].startswith("/dev/sg"):
            return Path(fields[-1])
    return None


def parse_proc_scsi(listing: str) -> str | None:
    """Return ``"H:C:I:L"`` of the scsi_debug entry in ``/proc/scsi/scsi``.

    Each device block is a ``Host:`` line followed by ``Vendor:/Model:``
    lines; the block whose model names scsi_debug wins.
    """
    current: str | None = None
    for line in listing.splitlines():
        match = _HOST_RE.search(line)
        if match:
            current = ":".join(str(int(part)) for part in match.groups())
            continue
        if current and SCSI_DEBUG_MODEL in line:
            return current
    return None


class ModuleProvisioner:
    """Load and unload the scsi_debug kernel module.

    Parameters:
        module: Kernel module name.
        params: ``key=value`` module parameters.
        settle_seconds: Wait after loading for udev to create the nodes.
        locator: Discovery used once the module is loaded.
    """

    def __init__(
        self,
        module: str,
        params: Sequence[str],
        *,
        settle_seconds: float = 2.0,
        locator: DeviceLocator | None = None,
    ) -> None:
        self.module = module
        self.params = list(params)
        self.settle_seconds = settle_seconds
        self.locator = locator or DeviceLocator()

    def provision(self) -> Path:
        """Reload the module, discover its node, and open up permissions.

        Raises:
            ProvisioningError: If ``modprobe`` fails.
            DeviceNotFoundError: If no node shows up after loading.
        """
        self._run(["rmmod", self.module])
        result = self._run(["modprobe", self.module, *self.params])
        if result is None or result.returncode != 0:
            detail = result.stderr.strip() if result is not None else "modprobe not runnable"
            msg = f"Failed to load {self.module}: {detail}"
            raise ProvisioningError(msg)
        time.sleep(self.settle_seconds)

        node = self.locator.discover()
        try:
            node.chmod(0o666)
        except OSError as exc:
            logger.warning("device.chmod_failed", node=str(node), error=str(exc))
        return node

    def teardown(self) -> None:
        """Unload the module.  Failures are logged, never raised."""
        result = self._run(["rmmod", self.module])
        if result is None or result.returncode != 0:
            logger.warning("device.teardown_failed", module=self.module)

    def _run(self, argv: list[str]) -> subprocess.CompletedProcess[str] | None:
        logger.debug("device.exec", argv=argv)
        try:
            return subprocess.run(argv, capture_output=True, text=True, check=False, timeout=60)
        except (OSError, subprocess.SubprocessError) as exc:
            logger.debug("device.exec_failed", argv=argv, error=str(exc))
            return None
