"""Unit tests for data models."""

import dataclasses
from datetime import datetime, timedelta

import pytest

from pve_pact.models import (
    BuildOptions,
    BuildReport,
    DistroDescriptor,
    DistroOutcome,
    DistroStage,
    LifecycleAction,
    LifecycleDecision,
    PackerSettings,
    Phase,
    PlannedBuild,
    TemplateSettings,
)


class TestPhase:
    def test_offsets(self):
        assert Phase.BASE.offset == 0
        assert Phase.CUSTOMIZED.offset == 100


class TestDistroDescriptor:
    def test_frozen(self):
        d = DistroDescriptor("debian12", "Debian-12", 2, "https://example.org/d.qcow2")
        with pytest.raises(dataclasses.FrozenInstanceError):
            d.offset = 3

    def test_image_file_keeps_extension(self):
        d = DistroDescriptor("x", "X", 1, "https://example.org/path/image.raw?sig=1")
        assert d.image_file == "x-template.raw"


class TestLifecycleDecision:
    def test_flags(self):
        assert LifecycleDecision(LifecycleAction.ABORT, 802).aborted
        assert LifecycleDecision(LifecycleAction.PROCEED_AFTER_DESTROY, 802).requires_destroy
        proceed = LifecycleDecision(LifecycleAction.PROCEED, 802)
        assert not proceed.aborted and not proceed.requires_destroy


class TestSettings:
    def test_template_defaults(self):
        s = TemplateSettings()
        assert (s.bridge, s.memory, s.cores, s.disk_size) == ("vmbr0", 1024, 4, "8G")
        assert s.guest_packages == ["bash-completion", "qemu-guest-agent"]

    def test_guest_packages_not_shared(self):
        a, b = TemplateSettings(), TemplateSettings()
        a.guest_packages.append("vim")
        assert "vim" not in b.guest_packages

    def test_packer_api_url(self):
        assert PackerSettings(proxmox_host="10.0.0.5").api_url == (
            "https://10.0.0.5:8006/api2/json"
        )

    def test_build_option_defaults(self):
        options = BuildOptions()
        assert options.base == 800
        assert not (options.rebuild or options.customize or options.cleanup)
        assert not options.dry_run


class TestOutcome:
    def test_pending_is_neither_success_nor_failure(self):
        outcome = DistroOutcome("debian12")
        assert not outcome.success
        assert not outcome.failed

    def test_skipped_counts_as_failed(self):
        assert DistroOutcome("debian12", stage=DistroStage.SKIPPED).failed

    def test_to_dict(self):
        outcome = DistroOutcome(
            "debian12",
            base_vmid=802,
            stage=DistroStage.FAILED,
            failed_stage=DistroStage.LIFECYCLE_CHECKED,
            error="boom",
        )
        assert outcome.to_dict() == {
            "distro": "debian12",
            "success": False,
            "stage": "failed",
            "failed_stage": "lifecycle_checked",
            "base_vmid": 802,
            "customized_vmid": None,
            "error": "boom",
            "warnings": [],
        }


class TestBuildReport:
    def make_report(self, **stages):
        report = BuildReport()
        for distro_id, stage in stages.items():
            report.outcomes[distro_id] = DistroOutcome(distro_id, stage=stage)
        return report

    def test_all_done(self):
        report = self.make_report(debian12=DistroStage.DONE, rocky9=DistroStage.DONE)
        assert report.success
        assert report.exit_code == 0
        assert report.succeeded == ["debian12", "rocky9"]

    def test_one_failed(self):
        report = self.make_report(rocky9=DistroStage.FAILED, debian12=DistroStage.DONE)
        assert not report.success
        assert report.exit_code == 1
        assert report.failed == ["rocky9"]

    def test_empty_report_is_not_success(self):
        assert not BuildReport().success

    def test_duration(self):
        report = BuildReport()
        assert report.duration == 0.0
        report.completed = report.started + timedelta(seconds=90)
        assert report.duration == 90.0

    def test_to_dict_sorted(self):
        report = self.make_report(ubuntu2404=DistroStage.DONE, debian12=DistroStage.DONE)
        report.completed = datetime.now()
        data = report.to_dict()
        assert [d["distro"] for d in data["distros"]] == ["debian12", "ubuntu2404"]
        assert data["success"] is True


def test_planned_build_to_dict():
    plan = PlannedBuild("rocky9", "Rocky-9", 831, 931)
    assert plan.to_dict() == {
        "distro": "rocky9",
        "name": "Rocky-9",
        "base_vmid": 831,
        "customized_vmid": 931,
    }
