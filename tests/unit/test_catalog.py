"""Unit tests for the distribution catalog."""

import pytest

from pve_pact.catalog import ALL_GROUP, DistroCatalog, default_catalog
from pve_pact.exceptions import ConfigurationError
from pve_pact.models import DistroDescriptor

IMAGE = "https://images.example.org/disk.qcow2"


def distro(distro_id, offset):
    return DistroDescriptor(distro_id, distro_id.title(), offset, IMAGE)


class TestShippedCatalog:
    """The catalog the tool ships with."""

    def test_offsets(self):
        offsets = {d.id: d.offset for d in default_catalog}
        assert offsets == {
            "debian11": 1,
            "debian12": 2,
            "debian13": 3,
            "ubuntu2204": 11,
            "ubuntu2404": 12,
            "ubuntu2504": 13,
            "fedora41": 21,
            "rocky9": 31,
        }

    def test_groups(self):
        groups = default_catalog.groups
        assert groups["debian"] == {"debian11", "debian12", "debian13"}
        assert groups["ubuntu"] == {"ubuntu2204", "ubuntu2404", "ubuntu2504"}
        assert groups["fedora"] == {"fedora41"}
        assert groups["rocky"] == {"rocky9"}
        assert groups["rockylinux9"] == {"rocky9"}

    def test_all_group_is_every_id(self):
        assert default_catalog.groups[ALL_GROUP] == default_catalog.ids
        assert len(default_catalog) == 8

    def test_groups_are_read_only(self):
        with pytest.raises(TypeError):
            default_catalog.groups["debian"] = frozenset()

    def test_sources_are_http_images(self):
        for d in default_catalog:
            assert d.source_locator.startswith(("http://", "https://"))

    def test_template_name_and_image_file(self):
        d = default_catalog["ubuntu2404"]
        assert d.template_name == "Template-Ubuntu-2404"
        assert d.image_file == "ubuntu2404-template.img"
        assert default_catalog["debian12"].image_file == "debian12-template.qcow2"

    def test_lookup(self):
        assert "fedora41" in default_catalog
        assert "fedora" not in default_catalog
        assert default_catalog.get("nope") is None

    def test_descriptors_sorted_by_id(self):
        ids = [d.id for d in default_catalog.descriptors({"ubuntu2404", "debian12", "rocky9"})]
        assert ids == ["debian12", "rocky9", "ubuntu2404"]


class TestCatalogValidation:
    """Invariants enforced when a catalog is built."""

    def test_duplicate_id(self):
        with pytest.raises(ConfigurationError, match="Duplicate"):
            DistroCatalog([distro("a", 1), distro("a", 2)])

    def test_duplicate_offset(self):
        with pytest.raises(ConfigurationError, match="shared by"):
            DistroCatalog([distro("a", 5), distro("b", 5)])

    @pytest.mark.parametrize("offset", [0, -1, 100, 150])
    def test_offset_out_of_range(self, offset):
        with pytest.raises(ConfigurationError, match="between 1 and 99"):
            DistroCatalog([distro("a", offset)])

    def test_group_with_unknown_member(self):
        with pytest.raises(ConfigurationError, match="unknown distributions: ghost"):
            DistroCatalog([distro("a", 1)], {"g": ["a", "ghost"]})

    def test_group_shadowing_id(self):
        with pytest.raises(ConfigurationError, match="shadows"):
            DistroCatalog([distro("a", 1)], {"a": ["a"]})
