"""PVE Pact - Builds Proxmox VM templates from distribution cloud images."""

__version__ = "0.1.0"
__description__ = "Proxmox template builder"

from .catalog import DistroCatalog, default_catalog
from .client import TemplateBuildClient
from .models import (
    BuildOptions,
    BuildReport,
    DistroDescriptor,
    DistroOutcome,
    DistroStage,
    LifecycleAction,
    LifecycleDecision,
    Phase,
)
from .exceptions import (
    PactError,
    ConfigurationError,
    SelectionError,
    UnknownTokenError,
    EmptySelectionError,
    IdentifierInUseError,
    ExternalToolError,
    DestroyError,
)
from .selection import resolve
from .allocator import allocate
from .lifecycle import decide
from .orchestrator import BuildOrchestrator

__all__ = [
    "__version__",
    "__description__",
    "DistroCatalog",
    "default_catalog",
    "TemplateBuildClient",
    "BuildOptions",
    "BuildReport",
    "DistroDescriptor",
    "DistroOutcome",
    "DistroStage",
    "LifecycleAction",
    "LifecycleDecision",
    "Phase",
    "PactError",
    "ConfigurationError",
    "SelectionError",
    "UnknownTokenError",
    "EmptySelectionError",
    "IdentifierInUseError",
    "ExternalToolError",
    "DestroyError",
    "resolve",
    "allocate",
    "decide",
    "BuildOrchestrator",
]
