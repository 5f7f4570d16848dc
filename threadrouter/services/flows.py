"""
Flow loading.

Resolves the Flow owning an input and the outputs usable for routing.
Inputs and outputs whose flow no longer exists are skipped with a warning;
this is the single place referential integrity is checked.
"""

import logging
from typing import Optional

from threadrouter.models.records import Discussion, LoadedFlow
from threadrouter.services.store import Store

logger = logging.getLogger(__name__)


class FlowConfigurationError(Exception):
    """Raised when a flow cannot be used for routing (e.g. no default output)."""

    retryable = False


async def _load(store: Store, input_) -> Optional[LoadedFlow]:
    flow = await store.get_flow(input_.flow_id)
    if flow is None:
        logger.warning(
            f"Skipping orphaned input {input_.id}: flow {input_.flow_id} no longer exists"
        )
        return None

    if not flow.enabled:
        logger.info(f"Flow {flow.id} is disabled; ignoring input {input_.id}")
        return None

    outputs = []
    for output in await store.list_outputs(flow.id):
        if output.flow_id != flow.id:
            logger.warning(f"Skipping output {output.id} with mismatched flow {output.flow_id}")
            continue
        if not output.active:
            continue
        if not output.is_default and not output.accepted_topics:
            logger.warning(
                f"Output {output.id} of flow {flow.id} accepts no topics and is not the "
                f"default; it will never be routed to"
            )
        outputs.append(output)

    if not outputs:
        raise FlowConfigurationError(f"Flow {flow.id} has no active outputs")

    defaults = [o for o in outputs if o.is_default]
    if len(defaults) != 1:
        raise FlowConfigurationError(
            f"Flow {flow.id} must have exactly one default output, found {len(defaults)}"
        )

    return LoadedFlow(flow=flow, input=input_, outputs=outputs)


async def load_flow_by_workspace(
    store: Store, platform: str, workspace_id: str
) -> Optional[LoadedFlow]:
    """
    Find the flow for an incoming event.

    Args:
        store: Record store
        platform: Source platform (e.g. "slack")
        workspace_id: Slack team_id, Figma webhook_id

    Returns:
        LoadedFlow, or None when no active input of an existing, enabled
        flow matches

    Raises:
        FlowConfigurationError: The matching flow has no single default output
    """
    for input_ in await store.find_inputs(platform, workspace_id):
        if not input_.active:
            continue
        loaded = await _load(store, input_)
        if loaded is not None:
            return loaded

    logger.info(f"No flow configured for {platform} workspace {workspace_id}")
    return None


async def load_flow_for_discussion(store: Store, discussion: Discussion) -> LoadedFlow:
    """
    Re-resolve the flow of a stored discussion.

    Raises:
        FlowConfigurationError: The input or flow was removed or is unusable
    """
    input_ = await store.get_input(discussion.input_id)
    if input_ is None or not input_.active:
        raise FlowConfigurationError(
            f"Input {discussion.input_id} of discussion {discussion.id} is no longer available"
        )

    loaded = await _load(store, input_)
    if loaded is None:
        raise FlowConfigurationError(
            f"Flow {discussion.flow_id} of discussion {discussion.id} is no longer available"
        )
    return loaded
