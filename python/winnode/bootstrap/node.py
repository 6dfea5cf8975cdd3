"""
winnode/bootstrap/node.py

Correlates a cloud instance with its Node object and marks the Node as a worker.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from winnode.bootstrap.errors import (
    HostSubnetNotFoundError,
    NodeNotFoundError,
    NodeUpdateError,
)
from winnode.models.k8s import Node
from winnode.models.retry import RetryPolicy, CONFLICT_RETRY, HOST_SUBNET_RETRY
from winnode.models.validator import parse_object
from winnode.utils.async_command_runner import CommandError
from winnode.utils.async_retry import RetryDeadlineExceeded, async_retry
from winnode.utils.k8s import ConflictError, KubectlClient

logger = logging.getLogger(__name__)

WORKER_LABEL = "node-role.kubernetes.io/worker"
WINDOWS_NODE_SELECTOR = "node.openshift.io/os_id=Windows"
# Set by the hybrid overlay on each Windows node once a subnet has been assigned
HYBRID_OVERLAY_SUBNET_ANNOTATION = "k8s.ovn.org/hybrid-overlay-node-subnet"


def get_instance_id(provider_id: Optional[str]) -> str:
    """
    Return the instance id embedded in a cloud provider id.

    Ex: aws:///us-east-1e/i-078285fdadccb2eaa => i-078285fdadccb2eaa.
    We always want the last entry which is the instance id.
    """
    return (provider_id or "").split("/")[-1]


class NodeRegistrar:
    """Looks up the Node created for an instance and applies the worker label."""

    def __init__(
        self,
        client: KubectlClient,
        *,
        selector: str = WINDOWS_NODE_SELECTOR,
        conflict: RetryPolicy = CONFLICT_RETRY,
    ) -> None:
        self._client = client
        self._selector = selector
        self._conflict = conflict

    async def find_node(self, instance_id: str) -> Node:
        """
        Return the Windows Node whose provider id ends with `instance_id`.

        Raises:
            NodeNotFoundError: If the Node list cannot be read or no Node matches.
        """
        try:
            raw_items = await self._client.list("nodes", label_selector=self._selector)
        except CommandError as ex:
            raise NodeNotFoundError(f"error listing nodes: {ex}") from ex

        for raw in raw_items:
            node = parse_object(raw, Node)
            if get_instance_id(node.spec.provider_id) == instance_id:
                return node
        raise NodeNotFoundError(f"unable to find node for instance {instance_id}")

    async def apply_worker_label(self, node: Node) -> Node:
        """
        Set the worker label (empty value) and submit the full Node.

        Labels are presence-only, so applying the label to a Node that already
        carries it is harmless. On an update conflict the Node is re-read and
        the label set again.

        Raises:
            NodeUpdateError: If the update keeps failing.
        """
        name = node.metadata.name
        current = node

        @async_retry(policy=self._conflict, retry_on=(ConflictError,), noisy=True)
        async def _update() -> Node:
            nonlocal current
            current.metadata.labels[WORKER_LABEL] = ""
            try:
                updated = await self._client.replace(current.to_manifest())
            except ConflictError:
                current = parse_object(await self._client.get("node", name), Node)
                raise
            return parse_object(updated, Node)

        try:
            labeled = await _update()
        except CommandError as ex:
            raise NodeUpdateError(f"error updating node object {name}: {ex}") from ex
        logger.info("Applied %s to node %s", WORKER_LABEL, name)
        return labeled

    async def wait_for_host_subnet(
        self,
        instance_id: str,
        policy: RetryPolicy = HOST_SUBNET_RETRY,
        cancel: Optional[asyncio.Event] = None,
    ) -> str:
        """
        Poll the instance's Node until the hybrid overlay has annotated it with
        a host subnet, and return that subnet.

        Raises:
            HostSubnetNotFoundError: If the annotation does not appear in time.
        """

        @async_retry(policy=policy, retry_on=(HostSubnetNotFoundError,), cancel=cancel)
        async def _read() -> str:
            node = await self.find_node(instance_id)
            subnet = node.metadata.annotations.get(HYBRID_OVERLAY_SUBNET_ANNOTATION, "")
            if not subnet:
                raise HostSubnetNotFoundError(
                    f"node {node.metadata.name} has no {HYBRID_OVERLAY_SUBNET_ANNOTATION} annotation"
                )
            return subnet

        try:
            return await _read()
        except RetryDeadlineExceeded as ex:
            raise HostSubnetNotFoundError(
                f"no host subnet for instance {instance_id}: {ex}"
            ) from ex
