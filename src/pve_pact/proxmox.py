"""
Proxmox host operations.

This module wraps the ``qm`` CLI and the image tooling on a Proxmox host. Every
operation goes through a transport connection, so it works the same over SSH
and when running on the host itself.
"""

from typing import List, Optional, Tuple

from .exceptions import DestroyError, ExternalToolError
from .logging import logger
from .models import DistroDescriptor, TemplateSettings
from .security import CommandBuilder, SecurityValidator
from .transport import Connection

# qm reports a missing VMID with this phrase on stderr
_MISSING_MARKER = "does not exist"


class ProxmoxHost:
    """High-level interface to ``qm`` on one Proxmox node."""

    def __init__(
        self,
        connection: Connection,
        settings: Optional[TemplateSettings] = None,
        command_timeout: int = 1800,
    ) -> None:
        self.connection = connection
        self.settings = settings or TemplateSettings()
        self.command_timeout = command_timeout

    @property
    def host(self) -> str:
        return self.connection.host

    async def _run(self, command: str, timeout: Optional[int] = None) -> Tuple[str, str, int]:
        return await self.connection.execute_command(
            command, timeout or self.command_timeout
        )

    async def image_exists(self, vmid: int) -> bool:
        """Whether a VM or template with ``vmid`` exists on the node."""
        command = CommandBuilder.build_qm_command("status", vmid)
        stdout, stderr, exit_code = await self._run(command, timeout=60)
        if exit_code == 0:
            return True
        if _MISSING_MARKER in stderr:
            return False
        # An unreadable answer must not be mistaken for a free VMID
        raise ExternalToolError(
            stderr.strip() or f"exit code {exit_code}",
            stage="lifecycle_check",
            step=command,
        )

    async def destroy(self, vmid: int) -> None:
        """
        Destroy ``vmid`` and its disks. A missing VMID is not an error.

        Raises:
            DestroyError: If qm fails for any other reason
        """
        command = CommandBuilder.build_qm_command("destroy", vmid, "--purge")
        stdout, stderr, exit_code = await self._run(command, timeout=300)
        if exit_code == 0:
            logger.info(f"Destroyed VMID {vmid}", vmid=vmid, host=self.host)
            return
        if _MISSING_MARKER in stderr:
            logger.debug(f"VMID {vmid} not present, nothing to destroy", vmid=vmid)
            return
        raise DestroyError(vmid, stderr.strip() or f"exit code {exit_code}")

    async def ensure_tooling(self) -> None:
        """Install libguestfs-tools (virt-customize) when missing."""
        command = (
            "command -v virt-customize >/dev/null 2>&1 || "
            "apt-get install -y libguestfs-tools"
        )
        stdout, stderr, exit_code = await self._run(command)
        if exit_code != 0:
            raise ExternalToolError(
                stderr.strip(), stage="prepare_host", step="install libguestfs-tools"
            )
        logger.info("Image tooling available", host=self.host)

    async def remove_working_dir(self) -> None:
        """
        Remove the working directory and any images left in it.

        Raises:
            ValidationError: If the directory is not a safe absolute path
            ExternalToolError: If rm fails
        """
        working_dir = SecurityValidator.validate_working_dir(self.settings.working_dir)
        stdout, stderr, exit_code = await self._run(
            CommandBuilder.build_command("rm", "-rf", working_dir), timeout=300
        )
        if exit_code != 0:
            raise ExternalToolError(
                stderr.strip() or f"exit code {exit_code}",
                stage="cleanup",
                step="remove working dir",
            )
        logger.info(f"Removed {working_dir}", host=self.host)

    def base_template_commands(
        self, vmid: int, descriptor: DistroDescriptor, storage_pool: str
    ) -> List[Tuple[str, str]]:
        """(step name, command) pairs that turn a cloud image into a template."""
        s = self.settings
        SecurityValidator.validate_url(descriptor.source_locator)
        storage_pool = SecurityValidator.validate_storage_pool(storage_pool)
        bridge = SecurityValidator.validate_bridge(s.bridge)
        disk_size = SecurityValidator.validate_disk_size(s.disk_size)

        image_path = f"{s.working_dir.rstrip('/')}/{descriptor.image_file}"
        qm = CommandBuilder.build_qm_command

        steps = [
            ("prepare", CommandBuilder.build_command("mkdir", "-p", s.working_dir)),
            (
                "download",
                CommandBuilder.build_command(
                    "curl", "-fsSL", "-o", image_path, descriptor.source_locator
                ),
            ),
        ]
        for package in s.guest_packages:
            steps.append(
                (
                    f"install {package}",
                    CommandBuilder.build_command(
                        "virt-customize", "-a", image_path, "--install", package
                    ),
                )
            )
        steps.extend(
            [
                ("create", qm("create", vmid, "--name", descriptor.template_name, "--ostype", "l26")),
                ("network", qm("set", vmid, "--net0", f"virtio,bridge={bridge}")),
                ("serial console", qm("set", vmid, "--serial0", "socket", "--vga", "serial0")),
                (
                    "cpu and memory",
                    qm("set", vmid, "--memory", s.memory, "--cores", s.cores, "--cpu", "host"),
                ),
                (
                    "import disk",
                    qm(
                        "set",
                        vmid,
                        "--scsi0",
                        f"{storage_pool}:0,import-from={image_path},discard=on",
                    ),
                ),
                (
                    "boot order",
                    qm("set", vmid, "--boot", "order=scsi0", "--scsihw", "virtio-scsi-single"),
                ),
                ("guest agent", qm("set", vmid, "--agent", "enabled=1,fstrim_cloned_disks=1")),
                ("cloud-init", qm("set", vmid, "--ide3", f"{storage_pool}:cloudinit")),
                ("resize disk", qm("disk resize", vmid, "scsi0", disk_size)),
                ("convert to template", qm("template", vmid)),
                # import-from copied the image into storage
                ("remove image", CommandBuilder.build_command("rm", "-f", image_path)),
            ]
        )
        return steps

    async def create_base_template(
        self, vmid: int, descriptor: DistroDescriptor, storage_pool: str
    ) -> None:
        """
        Download the cloud image of ``descriptor`` and turn it into template ``vmid``.

        Raises:
            ExternalToolError: On the first step that fails
        """
        logger.info(
            f"Creating base template {descriptor.template_name} at VMID {vmid}",
            distro=descriptor.id,
            vmid=vmid,
            storage_pool=storage_pool,
        )
        for step, command in self.base_template_commands(vmid, descriptor, storage_pool):
            logger.debug(f"{descriptor.id}: {step}", distro=descriptor.id, vmid=vmid)
            stdout, stderr, exit_code = await self._run(command)
            if exit_code != 0:
                raise ExternalToolError(
                    stderr.strip() or f"exit code {exit_code}",
                    distro_id=descriptor.id,
                    stage="create_base_template",
                    step=step,
                )
