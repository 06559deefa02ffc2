"""
Lifecycle guard for target VMIDs.

Decides whether a build may use a VMID. The guard performs no I/O itself; the
caller supplies the existence probe, normally backed by the hypervisor.
"""

from typing import Awaitable, Callable

from .models import LifecycleAction, LifecycleDecision

IN_USE_REASON = "identifier already in use"


def decide(
    identifier: int, rebuild_requested: bool, existence_probe: Callable[[], bool]
) -> LifecycleDecision:
    """
    Decide how to treat ``identifier``.

    With ``rebuild_requested`` the probe is never called: the caller destroys
    the identifier unconditionally, which is a no-op when it is absent.
    """
    if rebuild_requested:
        return LifecycleDecision(LifecycleAction.PROCEED_AFTER_DESTROY, identifier)
    if existence_probe():
        return LifecycleDecision(LifecycleAction.ABORT, identifier, IN_USE_REASON)
    return LifecycleDecision(LifecycleAction.PROCEED, identifier)


async def decide_async(
    identifier: int,
    rebuild_requested: bool,
    existence_probe: Callable[[], Awaitable[bool]],
) -> LifecycleDecision:
    """Same policy as :func:`decide` for a probe that has to be awaited."""
    if rebuild_requested:
        return LifecycleDecision(LifecycleAction.PROCEED_AFTER_DESTROY, identifier)
    exists = await existence_probe()
    return decide(identifier, False, lambda: exists)
