"""VMID allocation for base and customized templates."""

from typing import Iterable, List, Tuple

from .exceptions import ConfigurationError
from .models import DistroDescriptor, Phase


def allocate(base: int, descriptor: DistroDescriptor, phase: Phase = Phase.BASE) -> int:
    """
    Return the VMID of ``descriptor`` in ``phase`` for a given base VMID.

    Raises:
        ConfigurationError: If ``base`` is not positive
    """
    # AppConfig (gt=0) and BuildOrchestrator.run reject this earlier
    if base <= 0:
        raise ConfigurationError(f"Base VMID must be positive, got {base}")
    return base + descriptor.offset + phase.offset


def identifiers_for(base: int, descriptor: DistroDescriptor) -> Tuple[int, int]:
    """(base template VMID, customized template VMID) for one distribution."""
    return allocate(base, descriptor, Phase.BASE), allocate(
        base, descriptor, Phase.CUSTOMIZED
    )


def intermediate_identifiers(
    base: int, descriptors: Iterable[DistroDescriptor]
) -> List[int]:
    """Base-phase VMIDs of the given distributions, in ascending order."""
    return sorted(allocate(base, d, Phase.BASE) for d in descriptors)
