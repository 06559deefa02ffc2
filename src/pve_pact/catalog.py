"""
Distribution catalog.

The catalog maps each buildable distribution to its display name, its fixed
VMID offset and the cloud image it is built from. Groups are named aliases
for sets of catalog ids. Both tables are read-only for the life of the process.
"""

from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional

from .exceptions import ConfigurationError
from .models import DistroDescriptor, PHASE_SEPARATION

ALL_GROUP = "all"

_DISTROS = (
    DistroDescriptor(
        "debian11",
        "Debian-11",
        1,
        "https://cloud.debian.org/images/cloud/bullseye/latest/debian-11-genericcloud-amd64.qcow2",
    ),
    DistroDescriptor(
        "debian12",
        "Debian-12",
        2,
        "https://cloud.debian.org/images/cloud/bookworm/latest/debian-12-genericcloud-amd64.qcow2",
    ),
    DistroDescriptor(
        "debian13",
        "Debian-13",
        3,
        "https://cloud.debian.org/images/cloud/trixie/daily/latest/debian-13-genericcloud-amd64-daily.qcow2",
    ),
    DistroDescriptor(
        "ubuntu2204",
        "Ubuntu-2204",
        11,
        "https://cloud-images.ubuntu.com/releases/22.04/release/ubuntu-22.04-server-cloudimg-amd64.img",
    ),
    DistroDescriptor(
        "ubuntu2404",
        "Ubuntu-2404",
        12,
        "https://cloud-images.ubuntu.com/releases/24.04/release/ubuntu-24.04-server-cloudimg-amd64.img",
    ),
    DistroDescriptor(
        "ubuntu2504",
        "Ubuntu-2504",
        13,
        "https://cloud-images.ubuntu.com/releases/plucky/release/ubuntu-25.04-server-cloudimg-amd64.img",
    ),
    DistroDescriptor(
        "fedora41",
        "Fedora-41",
        21,
        "https://fedora.mirror.constant.com/fedora/linux/releases/41/Cloud/x86_64/images/Fedora-Cloud-Base-Generic-41-1.4.x86_64.qcow2",
    ),
    DistroDescriptor(
        "rocky9",
        "Rocky-9",
        31,
        "http://dl.rockylinux.org/pub/rocky/9/images/x86_64/Rocky-9-GenericCloud.latest.x86_64.qcow2",
    ),
)

_GROUPS = {
    "debian": ("debian11", "debian12", "debian13"),
    "ubuntu": ("ubuntu2204", "ubuntu2404", "ubuntu2504"),
    "fedora": ("fedora41",),
    "rocky": ("rocky9",),
    "rockylinux9": ("rocky9",),
}


class DistroCatalog:
    """Read-only catalog of distributions and groups."""

    def __init__(
        self,
        distros: Iterable[DistroDescriptor],
        groups: Optional[Mapping[str, Iterable[str]]] = None,
    ) -> None:
        by_id: Dict[str, DistroDescriptor] = {}
        for descriptor in distros:
            if descriptor.id in by_id:
                raise ConfigurationError(f"Duplicate distribution id: {descriptor.id}")
            by_id[descriptor.id] = descriptor

        self._distros = MappingProxyType(by_id)
        self._groups = MappingProxyType(
            {name: frozenset(members) for name, members in (groups or {}).items()}
        )
        self.validate()

    def validate(self) -> None:
        """
        Check the invariants identifier allocation relies on.

        Offsets must be positive, pairwise distinct and below the phase
        separation, otherwise a base identifier of one distribution could
        land on the customized identifier of another.

        Raises:
            ConfigurationError: If the catalog or a group is inconsistent
        """
        seen: Dict[int, str] = {}
        for descriptor in self._distros.values():
            if not 0 < descriptor.offset < PHASE_SEPARATION:
                raise ConfigurationError(
                    f"Offset {descriptor.offset} of {descriptor.id} must be between "
                    f"1 and {PHASE_SEPARATION - 1}"
                )
            if descriptor.offset in seen:
                raise ConfigurationError(
                    f"Offset {descriptor.offset} shared by {seen[descriptor.offset]} "
                    f"and {descriptor.id}"
                )
            seen[descriptor.offset] = descriptor.id

        for name, members in self._groups.items():
            if name in self._distros:
                raise ConfigurationError(f"Group '{name}' shadows a distribution id")
            unknown = sorted(members - set(self._distros))
            if unknown:
                raise ConfigurationError(
                    f"Group '{name}' references unknown distributions: {', '.join(unknown)}"
                )

    def __contains__(self, distro_id: object) -> bool:
        return distro_id in self._distros

    def __iter__(self) -> Iterator[DistroDescriptor]:
        return iter(self._distros.values())

    def __len__(self) -> int:
        return len(self._distros)

    def __getitem__(self, distro_id: str) -> DistroDescriptor:
        return self._distros[distro_id]

    def get(self, distro_id: str) -> Optional[DistroDescriptor]:
        return self._distros.get(distro_id)

    @property
    def ids(self) -> FrozenSet[str]:
        return frozenset(self._distros)

    @property
    def groups(self) -> Mapping[str, FrozenSet[str]]:
        """Groups including the reserved ``all`` group."""
        groups = dict(self._groups)
        groups[ALL_GROUP] = self.ids
        return MappingProxyType(groups)

    def descriptors(self, distro_ids: Iterable[str]) -> List[DistroDescriptor]:
        """Descriptors for the given ids, sorted by id."""
        return [self._distros[d] for d in sorted(distro_ids)]


default_catalog = DistroCatalog(_DISTROS, _GROUPS)
