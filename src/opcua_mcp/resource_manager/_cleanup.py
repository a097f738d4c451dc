"""
Ordered, best-effort teardown of a connection and its dependent resources.

`run_teardown` is the "collect errors, never abort" combinator: it runs a fixed list of
steps in order, records each failure with the step name and moves on. `CleanupCoordinator`
builds the step list for a connection:

1. Terminate every active subscription (one step per subscription).
2. Unregister every registered node still held, in one batched request.
3. Close the session.
4. Disconnect the transport.
5. Clear both registries and reset the connection (runs even if the pass is cancelled).
"""

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from opcua_mcp._exceptions import CleanupError
from opcua_mcp.client import ProtocolSession

from ._registry import NodeRegistry, SubscriptionRegistry

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class TeardownStep:
    """A named teardown action."""

    name: str
    action: Callable[[], Awaitable[None]]


async def run_teardown(steps: list[TeardownStep]) -> list[tuple[str, BaseException]]:
    """
    Run teardown steps in order, continuing past failures.

    Args:
        steps (list[TeardownStep]): The steps, in execution order.

    Returns:
        list[tuple[str, BaseException]]: (step name, error) for each failed step, in order.
    """
    errors: list[tuple[str, BaseException]] = []
    for step in steps:
        try:
            await step.action()
        except Exception as e:
            _LOGGER.warning(f"[run_teardown] step '{step.name}' failed: {e!r}")
            errors.append((step.name, e))
    return errors


class CleanupCoordinator:
    """
    Tears down a protocol session and drains both registries.

    The coordinator does not lock anything itself; the connection manager serializes
    calls to `teardown` with its other mutating operations.

    Args:
        node_registry (NodeRegistry): Registered nodes to release.
        subscription_registry (SubscriptionRegistry): Subscriptions to terminate.
    """

    def __init__(
        self,
        node_registry: NodeRegistry,
        subscription_registry: SubscriptionRegistry,
    ) -> None:
        self._node_registry = node_registry
        self._subscription_registry = subscription_registry

    async def _build_steps(self, session: ProtocolSession) -> list[TeardownStep]:
        steps: list[TeardownStep] = []

        subscriptions = await self._subscription_registry.snapshot()
        for handle in subscriptions.items:
            steps.append(
                TeardownStep(
                    name=f"terminate_subscription:{handle}",
                    action=lambda handle=handle: session.delete_subscription(handle),
                )
            )

        nodes = await self._node_registry.snapshot()
        if nodes.items:
            registered_handles = list(nodes.items)
            steps.append(
                TeardownStep(
                    name="unregister_nodes",
                    action=lambda: session.unregister_nodes(registered_handles),
                )
            )

        steps.append(TeardownStep(name="close_session", action=session.close_session))
        steps.append(TeardownStep(name="disconnect", action=session.disconnect))
        return steps

    async def teardown(
        self,
        session: ProtocolSession | None,
        reset: Callable[[], None],
    ) -> CleanupError | None:
        """
        Run the full teardown pass.

        Steps 1-4 are skipped when there is no session. Clearing the registries and calling
        `reset` always happens, even when a step fails or the pass is cancelled.

        Args:
            session (ProtocolSession | None): The session to tear down.
            reset (Callable[[], None]): Resets the connection to DISCONNECTED.

        Returns:
            CleanupError | None: Aggregate of the failed steps, or None if every step succeeded.
        """
        start_time = time.time()
        errors: list[tuple[str, BaseException]] = []
        try:
            if session is not None:
                steps = await self._build_steps(session)
                _LOGGER.info(
                    f"[CleanupCoordinator] tearing down connection ({len(steps)} steps)"
                )
                errors = await run_teardown(steps)
        finally:
            removed_subscriptions = await self._subscription_registry.clear()
            removed_nodes = await self._node_registry.clear()
            reset()
            _LOGGER.info(
                f"[CleanupCoordinator] teardown finished in {time.time() - start_time:.2f}s: "
                f"cleared {removed_subscriptions} subscriptions and {removed_nodes} registered nodes, "
                f"{len(errors)} step errors"
            )

        if errors:
            cleanup_error = CleanupError(errors)
            _LOGGER.warning(f"[CleanupCoordinator] {cleanup_error}")
            return cleanup_error
        return None
