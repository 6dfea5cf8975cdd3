# winnode/bootstrap/events.py

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict

from winnode.models.k8s import Machine
from winnode.utils.async_command_runner import CommandError
from winnode.utils.k8s import KubectlClient

logger = logging.getLogger(__name__)

COMPONENT = "windows-node-bootstrapper"

EVENT_NORMAL = "Normal"
EVENT_WARNING = "Warning"

REASON_SETUP = "WindowsSetup"
REASON_SETUP_FAILURE = "WindowsSetupFailure"


class EventRecorder:
    """
    Records core/v1 Events against Machines, so the outcome of a bootstrap is
    visible with 'kubectl describe machine'. Recording is best effort: a failed
    create is logged and never fails the caller.
    """

    def __init__(self, client: KubectlClient, component: str = COMPONENT) -> None:
        self._client = client
        self._component = component

    def _build(self, machine: Machine, event_type: str, reason: str, message: str) -> Dict[str, Any]:
        now = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        meta = machine.metadata
        return {
            "apiVersion": "v1",
            "kind": "Event",
            "metadata": {
                "generateName": f"{meta.name}.",
                "namespace": meta.namespace,
            },
            "involvedObject": {
                "apiVersion": machine.api_version,
                "kind": machine.kind,
                "name": meta.name,
                "namespace": meta.namespace,
                "uid": meta.uid,
                "resourceVersion": meta.resource_version,
            },
            "type": event_type,
            "reason": reason,
            "message": message,
            "source": {"component": self._component},
            "firstTimestamp": now,
            "lastTimestamp": now,
            "count": 1,
        }

    async def record(self, machine: Machine, event_type: str, reason: str, message: str) -> None:
        try:
            await self._client.create(self._build(machine, event_type, reason, message))
        except CommandError as ex:
            logger.warning(
                "Unable to record %s event %s for machine %s: %s",
                event_type,
                reason,
                machine.metadata.name,
                ex,
            )

    async def normal(self, machine: Machine, reason: str, message: str) -> None:
        await self.record(machine, EVENT_NORMAL, reason, message)

    async def warning(self, machine: Machine, reason: str, message: str) -> None:
        await self.record(machine, EVENT_WARNING, reason, message)
