"""Unit tests for qm operations on a Proxmox host."""

import pytest

from pve_pact.catalog import default_catalog
from pve_pact.exceptions import DestroyError, ExternalToolError, ValidationError
from pve_pact.models import TemplateSettings
from pve_pact.proxmox import ProxmoxHost

MISSING = "Configuration file 'nodes/pve/qemu-server/802.conf' does not exist"


class TestImageExists:
    @pytest.mark.asyncio
    async def test_existing(self, connection):
        connection.respond("qm status 802", stdout="status: stopped\n")
        assert await ProxmoxHost(connection).image_exists(802) is True
        assert connection.commands == ["qm status 802"]

    @pytest.mark.asyncio
    async def test_missing(self, connection):
        connection.respond("qm status 802", stderr=MISSING, exit_code=2)
        assert await ProxmoxHost(connection).image_exists(802) is False

    @pytest.mark.asyncio
    async def test_unclear_answer_raises(self, connection):
        connection.respond("qm status", stderr="ipcc_send_rec failed", exit_code=255)
        with pytest.raises(ExternalToolError, match="ipcc_send_rec"):
            await ProxmoxHost(connection).image_exists(802)

    @pytest.mark.asyncio
    async def test_invalid_vmid(self, connection):
        with pytest.raises(ValidationError):
            await ProxmoxHost(connection).image_exists(42)
        assert connection.commands == []


class TestDestroy:
    @pytest.mark.asyncio
    async def test_destroy_purges(self, connection):
        await ProxmoxHost(connection).destroy(902)
        assert connection.commands == ["qm destroy 902 --purge"]

    @pytest.mark.asyncio
    async def test_missing_is_noop(self, connection):
        connection.respond("qm destroy", stderr=MISSING, exit_code=2)
        await ProxmoxHost(connection).destroy(802)

    @pytest.mark.asyncio
    async def test_failure(self, connection):
        connection.respond("qm destroy", stderr="VM is locked (clone)", exit_code=2)
        with pytest.raises(DestroyError) as exc_info:
            await ProxmoxHost(connection).destroy(802)
        assert exc_info.value.identifier == 802
        assert exc_info.value.error_code == 4002
        assert "locked" in str(exc_info.value)


class TestBaseTemplate:
    def test_command_sequence(self, connection):
        host = ProxmoxHost(connection, TemplateSettings(working_dir="/srv/images"))
        steps = dict(
            host.base_template_commands(812, default_catalog["ubuntu2404"], "local-lvm")
        )
        image = "/srv/images/ubuntu2404-template.img"

        assert steps["prepare"] == "mkdir -p /srv/images"
        assert steps["download"] == (
            f"curl -fsSL -o {image} "
            "https://cloud-images.ubuntu.com/releases/24.04/release/"
            "ubuntu-24.04-server-cloudimg-amd64.img"
        )
        assert steps["install qemu-guest-agent"] == (
            f"virt-customize -a {image} --install qemu-guest-agent"
        )
        assert steps["create"] == "qm create 812 --name Template-Ubuntu-2404 --ostype l26"
        assert steps["network"] == "qm set 812 --net0 virtio,bridge=vmbr0"
        assert steps["cpu and memory"] == (
            "qm set 812 --memory 1024 --cores 4 --cpu host"
        )
        assert steps["import disk"] == (
            f"qm set 812 --scsi0 local-lvm:0,import-from={image},discard=on"
        )
        assert steps["cloud-init"] == "qm set 812 --ide3 local-lvm:cloudinit"
        assert steps["resize disk"] == "qm disk resize 812 scsi0 8G"
        assert steps["convert to template"] == "qm template 812"
        assert steps["remove image"] == f"rm -f {image}"

    def test_image_removed_after_template_conversion(self, connection):
        steps = ProxmoxHost(connection).base_template_commands(
            802, default_catalog["debian12"], "local-lvm"
        )
        assert steps[0][0] == "prepare"
        assert steps[-2:] == [
            ("convert to template", "qm template 802"),
            ("remove image", "rm -f /root/workingdir/debian12-template.qcow2"),
        ]

    def test_invalid_storage_pool(self, connection):
        with pytest.raises(ValidationError):
            ProxmoxHost(connection).base_template_commands(
                802, default_catalog["debian12"], "local; rm -rf /"
            )

    @pytest.mark.asyncio
    async def test_create_runs_every_step(self, connection):
        host = ProxmoxHost(connection)
        await host.create_base_template(802, default_catalog["debian12"], "local-lvm")
        expected = [
            c for _, c in host.base_template_commands(
                802, default_catalog["debian12"], "local-lvm"
            )
        ]
        assert connection.commands == expected

    @pytest.mark.asyncio
    async def test_create_stops_at_failing_step(self, connection):
        connection.respond("curl", stderr="curl: (22) 404 Not Found", exit_code=22)
        with pytest.raises(ExternalToolError) as exc_info:
            await ProxmoxHost(connection).create_base_template(
                802, default_catalog["debian12"], "local-lvm"
            )
        assert exc_info.value.step == "download"
        assert exc_info.value.distro_id == "debian12"
        assert not any(c.startswith("qm") for c in connection.commands)


class TestTooling:
    @pytest.mark.asyncio
    async def test_ensure_tooling(self, connection):
        await ProxmoxHost(connection).ensure_tooling()
        assert "libguestfs-tools" in connection.commands[0]

    @pytest.mark.asyncio
    async def test_ensure_tooling_failure(self, connection):
        connection.respond("command -v", stderr="E: Unable to locate package", exit_code=100)
        with pytest.raises(ExternalToolError):
            await ProxmoxHost(connection).ensure_tooling()


class TestWorkingDir:
    @pytest.mark.asyncio
    async def test_remove_working_dir(self, connection):
        await ProxmoxHost(connection).remove_working_dir()
        assert connection.commands == ["rm -rf /root/workingdir"]

    @pytest.mark.asyncio
    async def test_remove_working_dir_quotes_path(self, connection):
        settings = TemplateSettings(working_dir="/srv/pact images")
        await ProxmoxHost(connection, settings).remove_working_dir()
        assert connection.commands == ["rm -rf '/srv/pact images'"]

    @pytest.mark.asyncio
    async def test_root_is_never_removed(self, connection):
        with pytest.raises(ValidationError):
            await ProxmoxHost(connection, TemplateSettings(working_dir="/")).remove_working_dir()
        assert connection.commands == []

    @pytest.mark.asyncio
    async def test_remove_failure(self, connection):
        connection.respond("rm -rf", stderr="rm: cannot remove: Device busy", exit_code=1)
        with pytest.raises(ExternalToolError) as exc_info:
            await ProxmoxHost(connection).remove_working_dir()
        assert exc_info.value.step == "remove working dir"
