"""
Data models for template build operations.

This module defines the data structures used throughout the template build system.
"""

from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum
from urllib.parse import urlparse

# Distance between a distribution's base template and its customized template
PHASE_SEPARATION = 100


class Phase(Enum):
    """Which stage of the pipeline an identifier belongs to."""

    BASE = "base"
    CUSTOMIZED = "customized"

    @property
    def offset(self) -> int:
        return PHASE_SEPARATION if self is Phase.CUSTOMIZED else 0


class LifecycleAction(Enum):
    """Lifecycle decisions for a target identifier."""

    PROCEED = "proceed"
    PROCEED_AFTER_DESTROY = "proceed_after_destroy"
    ABORT = "abort"


class DistroStage(Enum):
    """Per-distribution build states."""

    PENDING = "pending"
    IDENTIFIER_RESOLVED = "identifier_resolved"
    LIFECYCLE_CHECKED = "lifecycle_checked"
    BASE_TEMPLATE_CREATED = "base_template_created"
    CUSTOMIZATION_COMPLETED = "customization_completed"
    INTERMEDIATE_CLEANED = "intermediate_cleaned"
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class DistroDescriptor:
    """A buildable distribution from the catalog."""

    id: str
    display_name: str
    offset: int
    source_locator: str

    @property
    def template_name(self) -> str:
        return f"Template-{self.display_name}"

    @property
    def image_file(self) -> str:
        """Local file name the source image is downloaded to."""
        suffix = PurePosixPath(urlparse(self.source_locator).path).suffix
        return f"{self.id}-template{suffix}"


@dataclass(frozen=True)
class LifecycleDecision:
    """Outcome of the lifecycle guard for one identifier."""

    action: LifecycleAction
    identifier: int
    reason: Optional[str] = None

    @property
    def aborted(self) -> bool:
        return self.action is LifecycleAction.ABORT

    @property
    def requires_destroy(self) -> bool:
        return self.action is LifecycleAction.PROCEED_AFTER_DESTROY


@dataclass
class TemplateSettings:
    """Guest settings applied when materializing a base template."""

    bridge: str = "vmbr0"
    memory: int = 1024  # MB
    cores: int = 4
    disk_size: str = "8G"
    working_dir: str = "/root/workingdir"
    guest_packages: List[str] = field(
        default_factory=lambda: ["bash-completion", "qemu-guest-agent"]
    )


@dataclass
class PackerSettings:
    """Inputs for the Packer customization build."""

    template: str = "./Packer/Templates/universal.pkr.hcl"
    varfile: str = "./Packer/Variables/vars.json"
    playbook: Optional[str] = None
    proxmox_host: str = "pve.local"
    proxmox_node: str = "pve"
    token_id: Optional[str] = None
    token_secret: Optional[str] = None
    api_port: int = 8006

    @property
    def api_url(self) -> str:
        return f"https://{self.proxmox_host}:{self.api_port}/api2/json"


@dataclass
class BuildOptions:
    """Options for a build run."""

    base: int = 800
    storage_pool: str = "local-lvm"
    rebuild: bool = False
    customize: bool = False
    cleanup: bool = False
    halt_on_conflict: bool = False
    dry_run: bool = False


@dataclass
class PlannedBuild:
    """Identifiers a build of one distribution would use."""

    distro_id: str
    display_name: str
    base_vmid: int
    customized_vmid: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "distro": self.distro_id,
            "name": self.display_name,
            "base_vmid": self.base_vmid,
            "customized_vmid": self.customized_vmid,
        }


@dataclass
class DistroOutcome:
    """Result of building one distribution."""

    distro_id: str
    base_vmid: Optional[int] = None
    customized_vmid: Optional[int] = None
    stage: DistroStage = DistroStage.PENDING
    failed_stage: Optional[DistroStage] = None
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.stage is DistroStage.DONE

    @property
    def failed(self) -> bool:
        return self.stage in (DistroStage.FAILED, DistroStage.SKIPPED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "distro": self.distro_id,
            "success": self.success,
            "stage": self.stage.value,
            "failed_stage": self.failed_stage.value if self.failed_stage else None,
            "base_vmid": self.base_vmid,
            "customized_vmid": self.customized_vmid,
            "error": self.error,
            "warnings": list(self.warnings),
        }


@dataclass
class BuildReport:
    """Aggregated result of a build run."""

    outcomes: Dict[str, DistroOutcome] = field(default_factory=dict)
    started: datetime = field(default_factory=datetime.now)
    completed: Optional[datetime] = None
    dry_run: bool = False

    def outcome(self, distro_id: str) -> DistroOutcome:
        return self.outcomes[distro_id]

    @property
    def succeeded(self) -> List[str]:
        return sorted(d for d, o in self.outcomes.items() if o.success)

    @property
    def failed(self) -> List[str]:
        return sorted(d for d, o in self.outcomes.items() if o.failed)

    @property
    def success(self) -> bool:
        return bool(self.outcomes) and not self.failed

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1

    @property
    def duration(self) -> float:
        if not self.completed:
            return 0.0
        return (self.completed - self.started).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "dry_run": self.dry_run,
            "duration": self.duration,
            "distros": [self.outcomes[d].to_dict() for d in sorted(self.outcomes)],
        }

