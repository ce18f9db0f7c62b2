"""Pydantic configuration models with code-baked defaults.

Sparse TOML contract: defaults baked here, sgrace.toml only contains overrides.
The defaults target a scsi_debug tape device: 8 issuers,
1000 monitor iterations, 10 s implausibility threshold.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field

# --- sgrace.toml sections ---


class WorkloadConfig(BaseModel):
    """[workload] section — command issuer pool."""

    model_config = {"frozen": True}

    workers: int = Field(default=8, ge=1)
    command_timeout_ms: int = Field(default=60_000, ge=1)
    issue_delay: float = Field(default=0.0001, ge=0)
    transfer_length: int = Field(default=512, ge=1)


class MonitorConfig(BaseModel):
    """[monitor] section — diagnostic sampling loop."""

    model_config = {"frozen": True}

    iterations: int = Field(default=1000, ge=1)
    sample_interval: float = Field(default=0.0001, ge=0)
    unavailable_backoff: float = Field(default=1.0, ge=0)
    progress_every: int = Field(default=100, ge=1)
    max_snapshot_bytes: int = Field(default=65_536, ge=1)
    debug_path: Path = Path("/proc/scsi/sg/debug")


class DetectorConfig(BaseModel):
    """[detector] section."""

    model_config = {"frozen": True}

    threshold_ms: int = Field(default=10_000, ge=0)


class EvidenceConfig(BaseModel):
    """[evidence] section."""

    model_config = {"frozen": True}

    log_path: Path = Path("bug_find.log")
    fsync: bool = True


class DeviceConfig(BaseModel):
    """[device] section — environment setup around the run.

    An explicit ``path`` skips discovery; ``setup`` controls whether the
    kernel module is (re)loaded before the run.
    """

    model_config = {"frozen": True}

    path: Path | None = None
    setup: bool = True
    teardown: bool = True
    module: str = "scsi_debug"
    module_params: list[str] = Field(
        default_factory=lambda: [
            "ptype=1",
            "delay=1000",
            "ndelay=500000",
            "max_luns=1",
            "num_tgts=1",
        ]
    )
    settle_seconds: float = Field(default=2.0, ge=0)

