"""
Template build orchestration.

This module sequences, for every selected distribution, the lifecycle checks,
the base template build, the optional Packer customization and the optional
cleanup of the intermediate base template. Distributions are processed one at
a time in id order; a failure is recorded against its distribution and the
run moves on to the next one.
"""

from datetime import datetime
from typing import Iterable, List, Optional, cast

from .allocator import identifiers_for
from .catalog import DistroCatalog, default_catalog
from .exceptions import (
    ConfigurationError,
    EmptySelectionError,
    IdentifierInUseError,
    OperationCancelledError,
    PactError,
    UnknownTokenError,
)
from .lifecycle import decide_async
from .logging import logger
from .models import (
    BuildOptions,
    BuildReport,
    DistroDescriptor,
    DistroOutcome,
    DistroStage,
    LifecycleDecision,
    Phase,
    PlannedBuild,
)
from .packer import PackerCustomizer
from .proxmox import ProxmoxHost


def selected_descriptors(
    selection: Iterable[str], catalog: DistroCatalog = default_catalog
) -> List[DistroDescriptor]:
    """Catalog descriptors of a resolved selection, sorted by id."""
    selection = frozenset(selection)
    if not selection:
        raise EmptySelectionError()
    unknown = sorted(selection - catalog.ids)
    if unknown:
        raise UnknownTokenError(unknown)
    return catalog.descriptors(selection)


def plan_builds(
    selection: Iterable[str],
    options: BuildOptions,
    catalog: DistroCatalog = default_catalog,
) -> List[PlannedBuild]:
    """Identifiers a run would use, without touching the hypervisor."""
    plans = []
    for descriptor in selected_descriptors(selection, catalog):
        base_vmid, customized_vmid = identifiers_for(options.base, descriptor)
        plans.append(
            PlannedBuild(
                distro_id=descriptor.id,
                display_name=descriptor.display_name,
                base_vmid=base_vmid,
                customized_vmid=customized_vmid if options.customize else None,
            )
        )
    return plans


class BuildOrchestrator:
    """Builds templates for a resolved selection of distributions."""

    def __init__(
        self,
        hypervisor: ProxmoxHost,
        customizer: Optional[PackerCustomizer] = None,
        catalog: DistroCatalog = default_catalog,
        playbook: Optional[str] = None,
        varfile: Optional[str] = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            hypervisor: Provides image_exists, destroy and create_base_template
            customizer: Provides customize_template; required for customize runs
            catalog: Catalog the selection was resolved against
            playbook: Ansible playbook handed to the customization build
            varfile: Packer variable file handed to the customization build
        """
        self.hypervisor = hypervisor
        self.customizer = customizer
        self.catalog = catalog
        self.playbook = playbook
        self.varfile = varfile
        self._cancelled = False

    def cancel(self) -> None:
        """Stop the run at the next phase boundary."""
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def plan(self, selection: Iterable[str], options: BuildOptions) -> List[PlannedBuild]:
        return plan_builds(selection, options, self.catalog)

    async def run(self, selection: Iterable[str], options: BuildOptions) -> BuildReport:
        """
        Build every distribution of ``selection``.

        Args:
            selection: Resolved set of catalog ids
            options: Build options

        Returns:
            BuildReport: Per-distribution outcomes

        Raises:
            SelectionError: If the selection is empty or not in the catalog
            ConfigurationError: If customization is requested without a customizer
        """
        descriptors = selected_descriptors(selection, self.catalog)
        if options.base <= 0:
            raise ConfigurationError(f"Base VMID must be positive, got {options.base}")
        if options.customize and self.customizer is None:
            raise ConfigurationError("Customization requested but Packer is not configured")

        report = BuildReport(dry_run=options.dry_run)
        for descriptor in descriptors:
            report.outcomes[descriptor.id] = DistroOutcome(distro_id=descriptor.id)

        logger.info(
            f"Building {len(descriptors)} template(s) from VMID base {options.base}",
            distros=[d.id for d in descriptors],
            vmid_base=options.base,
            storage_pool=options.storage_pool,
            rebuild=options.rebuild,
            customize=options.customize,
            cleanup=options.cleanup,
            dry_run=options.dry_run,
        )

        halt_reason: Optional[str] = None
        for descriptor in descriptors:
            outcome = report.outcomes[descriptor.id]

            if halt_reason is None and self._cancelled:
                halt_reason = "build cancelled"
            if halt_reason is not None:
                outcome.stage = DistroStage.SKIPPED
                outcome.error = halt_reason
                logger.warning(
                    f"Skipping {descriptor.id}: {halt_reason}", distro=descriptor.id
                )
                continue

            try:
                await self._build_one(descriptor, options, outcome)
            except IdentifierInUseError as e:
                self._fail(outcome, e)
                if options.halt_on_conflict:
                    halt_reason = f"halted after VMID conflict on {descriptor.id}"
            except OperationCancelledError as e:
                self._fail(outcome, e)
                halt_reason = "build cancelled"
            except PactError as e:
                self._fail(outcome, e)
            except Exception as e:
                logger.error(
                    f"Unexpected error building {descriptor.id}: {e}",
                    distro=descriptor.id,
                    exc_info=True,
                )
                self._fail(outcome, e)

        report.completed = datetime.now()
        logger.info(
            "Build finished",
            succeeded=report.succeeded,
            failed=report.failed,
            duration=report.duration,
        )
        return report

    def _fail(self, outcome: DistroOutcome, error: Exception) -> None:
        outcome.failed_stage = outcome.stage
        outcome.stage = DistroStage.FAILED
        outcome.error = str(error)
        logger.error(
            f"Build of {outcome.distro_id} failed after {outcome.failed_stage.value}: {error}",
            distro=outcome.distro_id,
            stage=outcome.failed_stage,
        )

    def _checkpoint(self, descriptor: DistroDescriptor, outcome: DistroOutcome) -> None:
        if self._cancelled:
            raise OperationCancelledError(descriptor.id, outcome.stage.value)

    async def _check(
        self, vmid: int, descriptor: DistroDescriptor, phase: Phase, rebuild: bool
    ) -> LifecycleDecision:
        decision = await decide_async(
            vmid, rebuild, lambda: self.hypervisor.image_exists(vmid)
        )
        logger.debug(
            f"Lifecycle check for {descriptor.id} {phase.value} VMID {vmid}: "
            f"{decision.action.value}",
            distro=descriptor.id,
            vmid=vmid,
            phase=phase,
        )
        if decision.aborted:
            raise IdentifierInUseError(vmid, descriptor.id, phase.value)
        return decision

    async def _destroy_quietly(self, vmid: int, outcome: DistroOutcome) -> None:
        try:
            await self.hypervisor.destroy(vmid)
        except PactError as e:
            message = f"Could not destroy VMID {vmid}: {e}"
            logger.warning(message, distro=outcome.distro_id, vmid=vmid)
            outcome.warnings.append(message)

    async def _build_one(
        self, descriptor: DistroDescriptor, options: BuildOptions, outcome: DistroOutcome
    ) -> None:
        base_vmid, customized_vmid = identifiers_for(options.base, descriptor)
        outcome.base_vmid = base_vmid
        targets = [(base_vmid, Phase.BASE)]
        if options.customize:
            outcome.customized_vmid = customized_vmid
            targets.append((customized_vmid, Phase.CUSTOMIZED))
        outcome.stage = DistroStage.IDENTIFIER_RESOLVED

        # Every target is checked before anything is destroyed or created
        decisions = [
            await self._check(vmid, descriptor, phase, options.rebuild)
            for vmid, phase in targets
        ]
        outcome.stage = DistroStage.LIFECYCLE_CHECKED

        if options.dry_run:
            logger.info(
                f"Dry run: would build {descriptor.template_name}",
                distro=descriptor.id,
                base_vmid=base_vmid,
                customized_vmid=outcome.customized_vmid,
                destroy=[d.identifier for d in decisions if d.requires_destroy],
            )
            outcome.stage = DistroStage.DONE
            return

        self._checkpoint(descriptor, outcome)
        for decision in decisions:
            if decision.requires_destroy:
                await self._destroy_quietly(decision.identifier, outcome)

        await self.hypervisor.create_base_template(
            base_vmid, descriptor, options.storage_pool
        )
        outcome.stage = DistroStage.BASE_TEMPLATE_CREATED
        logger.info(
            f"Base template ready for {descriptor.id}",
            distro=descriptor.id,
            vmid=base_vmid,
        )

        if options.customize:
            self._checkpoint(descriptor, outcome)
            # run() refuses customize without a customizer
            customizer = cast(PackerCustomizer, self.customizer)
            await customizer.customize_template(
                customized_vmid,
                base_vmid,
                descriptor,
                options.storage_pool,
                self.playbook,
                self.varfile,
            )
            outcome.stage = DistroStage.CUSTOMIZATION_COMPLETED
            logger.info(
                f"Customized template ready for {descriptor.id}",
                distro=descriptor.id,
                vmid=customized_vmid,
            )

            if options.cleanup:
                self._checkpoint(descriptor, outcome)
                await self._destroy_quietly(base_vmid, outcome)
                outcome.stage = DistroStage.INTERMEDIATE_CLEANED

        outcome.stage = DistroStage.DONE
