"""
Main client class for template build operations.

This module wires configuration, transport, the Proxmox host, the Packer
customizer and the orchestrator into a single entry point.
"""

from typing import Optional, List

from .allocator import intermediate_identifiers
from .catalog import DistroCatalog, default_catalog
from .config import AppConfig
from .exceptions import PactError
from .logging import logger
from .models import BuildOptions, BuildReport, PlannedBuild
from .orchestrator import BuildOrchestrator, plan_builds
from .packer import PackerCustomizer
from .proxmox import ProxmoxHost
from .selection import ResolvedSelection, describe, resolve
from .transport import Connection, LocalConnection, SSHTransport


class TemplateBuildClient:
    """
    Main client for template build operations.

    Args:
        config (AppConfig): Validated configuration
        catalog (DistroCatalog): Distribution catalog

    Usage:
        async with TemplateBuildClient(config) as client:
            report = await client.build("debian,ubuntu2404")
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        catalog: DistroCatalog = default_catalog,
    ) -> None:
        self.config = config or AppConfig()
        self.catalog = catalog
        self.transport = SSHTransport(
            key_path=self.config.ssh_key_path,
            password=self.config.ssh_password,
            timeout=self.config.default_timeout,
            host_key_policy=self.config.ssh_host_key_policy,
        )
        self._host: Optional[ProxmoxHost] = None
        self._orchestrator: Optional[BuildOrchestrator] = None
        self._cancel_requested = False

    def resolve(self, raw: Optional[str] = None) -> ResolvedSelection:
        """Resolve ``raw`` (default: the configured selection) against the catalog."""
        return resolve(self.config.build if raw is None else raw, self.catalog)

    def options(self, dry_run: bool = False) -> BuildOptions:
        return self.config.build_options(dry_run=dry_run)

    def plan(self, raw: Optional[str] = None) -> List[PlannedBuild]:
        """VMIDs a build would use. Needs no connection."""
        return plan_builds(self.resolve(raw), self.options(), self.catalog)

    async def _connection(self) -> Connection:
        if self.config.mode == "local":
            return LocalConnection(timeout=self.config.command_timeout)
        async with self.transport.connect(
            self.config.proxmox_host, self.config.ssh_port, self.config.ssh_user
        ) as conn:
            return conn

    async def host(self) -> ProxmoxHost:
        if self._host is None:
            self._host = ProxmoxHost(
                await self._connection(),
                self.config.template_settings(),
                command_timeout=self.config.command_timeout,
            )
        return self._host

    async def orchestrator(self) -> BuildOrchestrator:
        if self._orchestrator is None:
            customizer = None
            if self.config.packer:
                customizer = PackerCustomizer(
                    self.config.packer_settings(), timeout=self.config.packer_timeout
                )
            self._orchestrator = BuildOrchestrator(
                await self.host(),
                customizer,
                catalog=self.catalog,
                playbook=self.config.packer_playbook,
                varfile=self.config.packer_varfile,
            )
            if self._cancel_requested:
                self._orchestrator.cancel()
        return self._orchestrator

    def cancel(self) -> None:
        """Stop a running build at its next phase boundary."""
        self._cancel_requested = True
        if self._orchestrator is not None:
            self._orchestrator.cancel()

    async def build(self, raw: Optional[str] = None, dry_run: bool = False) -> BuildReport:
        """
        Resolve the selection and build its templates.

        The selection is resolved before any connection is opened, so an
        invalid selection never reaches the hypervisor.

        Raises:
            SelectionError: If the selection is invalid
        """
        selection = self.resolve(raw)
        logger.info(f"Selected distributions: {describe(selection)}")

        orchestrator = await self.orchestrator()
        if self.config.install_tooling and not dry_run:
            await orchestrator.hypervisor.ensure_tooling()
        return await orchestrator.run(selection, self.options(dry_run=dry_run))

    async def cleanup(
        self, raw: Optional[str] = None, destroy_vms: bool = False
    ) -> List[int]:
        """
        Remove build artifacts from the Proxmox host.

        The working directory is always removed. With ``destroy_vms`` the
        intermediate base templates of the selection are destroyed first, best
        effort.

        Returns:
            List of VMIDs that could not be destroyed

        Raises:
            ExternalToolError: If the working directory could not be removed
        """
        selection = self.resolve(raw)
        host = await self.host()
        failed = []
        if destroy_vms:
            for vmid in intermediate_identifiers(
                self.config.vmid_base, self.catalog.descriptors(selection)
            ):
                try:
                    await host.destroy(vmid)
                except PactError as e:
                    logger.warning(f"Could not destroy VMID {vmid}: {e}", vmid=vmid)
                    failed.append(vmid)
        await host.remove_working_dir()
        return failed

    async def __aenter__(self) -> "TemplateBuildClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.transport.close_all()
