"""
Packer customization builds.

A customization clones the base template, boots it, applies the Ansible
playbook through Packer's provisioner and saves the result as a new template.
Packer runs on the build machine and talks to the Proxmox API.
"""

from typing import List, Optional, Set, Tuple

from .exceptions import ConfigurationError, ExternalToolError
from .logging import logger
from .models import DistroDescriptor, PackerSettings
from .security import CommandBuilder, SecurityValidator
from .transport import Connection, LocalConnection

_REDACTED = "********"


class PackerCustomizer:
    """Runs ``packer init`` and ``packer build`` for one distribution at a time."""

    def __init__(
        self,
        settings: PackerSettings,
        connection: Optional[Connection] = None,
        timeout: int = 3600,
    ) -> None:
        self.settings = settings
        self.connection = connection or LocalConnection(timeout=timeout)
        self.timeout = timeout
        self._initialized: Set[str] = set()

    def build_variables(
        self,
        customized_vmid: int,
        base_vmid: int,
        descriptor: DistroDescriptor,
        storage_pool: str,
        playbook: Optional[str] = None,
    ) -> List[Tuple[str, str]]:
        """Packer ``-var`` pairs for one customization build."""
        s = self.settings
        if not s.token_id or not s.token_secret:
            raise ConfigurationError(
                "packer_token_id and packer_token_secret are required for customization"
            )

        variables = [
            ("proxmox_host_node", s.proxmox_node),
            ("proxmox_api_url", s.api_url),
            ("proxmox_api_token_id", s.token_id),
            ("proxmox_api_token_secret", s.token_secret),
            ("vmid", str(SecurityValidator.validate_vmid(customized_vmid))),
            ("clone_vm_id", str(SecurityValidator.validate_vmid(base_vmid))),
            ("storage_pool", SecurityValidator.validate_storage_pool(storage_pool)),
            ("distro", descriptor.id),
            ("template_name", f"{descriptor.template_name}-Custom"),
        ]
        playbook = playbook or s.playbook
        if playbook:
            variables.append(("ansible_playbook", playbook))
        return variables

    def build_command(
        self,
        customized_vmid: int,
        base_vmid: int,
        descriptor: DistroDescriptor,
        storage_pool: str,
        playbook: Optional[str] = None,
        varfile: Optional[str] = None,
        redact: bool = False,
    ) -> str:
        argv: List[str] = ["packer", "build", f"-var-file={varfile or self.settings.varfile}"]
        for name, value in self.build_variables(
            customized_vmid, base_vmid, descriptor, storage_pool, playbook
        ):
            if redact and name == "proxmox_api_token_secret":
                value = _REDACTED
            argv.extend(["-var", f"{name}={value}"])
        argv.append(self.settings.template)
        return CommandBuilder.build_command(*argv)

    async def _init(self, distro_id: str) -> None:
        template = self.settings.template
        if template in self._initialized:
            return
        command = CommandBuilder.build_command("packer", "init", template)
        stdout, stderr, exit_code = await self.connection.execute_command(
            command, timeout=600
        )
        if exit_code != 0:
            raise ExternalToolError(
                stderr.strip() or f"exit code {exit_code}",
                distro_id=distro_id,
                stage="customize_template",
                step="packer init",
            )
        self._initialized.add(template)

    async def customize_template(
        self,
        customized_vmid: int,
        base_vmid: int,
        descriptor: DistroDescriptor,
        storage_pool: str,
        playbook: Optional[str] = None,
        varfile: Optional[str] = None,
    ) -> None:
        """
        Build customized template ``customized_vmid`` from a clone of ``base_vmid``.

        Raises:
            ConfigurationError: If API credentials are missing
            ExternalToolError: If packer fails
        """
        command = self.build_command(
            customized_vmid, base_vmid, descriptor, storage_pool, playbook, varfile
        )
        redacted = self.build_command(
            customized_vmid,
            base_vmid,
            descriptor,
            storage_pool,
            playbook,
            varfile,
            redact=True,
        )
        logger.info(
            f"Customizing {descriptor.id}: VMID {base_vmid} -> {customized_vmid}",
            distro=descriptor.id,
            vmid=customized_vmid,
            clone_vmid=base_vmid,
            command=redacted,
        )

        await self._init(descriptor.id)

        stdout, stderr, exit_code = await self.connection.execute_command(
            command, timeout=self.timeout, log_command=redacted
        )
        if exit_code != 0:
            # packer reports build errors on stdout
            detail = (stderr.strip() or stdout.strip()).splitlines()
            raise ExternalToolError(
                detail[-1] if detail else f"exit code {exit_code}",
                distro_id=descriptor.id,
                stage="customize_template",
                step="packer build",
            )
