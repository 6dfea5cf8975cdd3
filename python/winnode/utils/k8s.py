"""
winnode/utils/k8s.py

Provides an async client for the cluster control plane built on 'kubectl'.
Every call requests JSON output and classifies failures reported by the API
server (NotFound, AlreadyExists, Conflict) into dedicated exception types so
callers can tell "not applicable" from "transient" from "fatal".
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from winnode.utils.async_command_runner import run_command, CommandError


class KubeApiError(CommandError):
    """A kubectl call that reached the API server and was rejected."""


class NotFoundError(KubeApiError):
    """The requested object does not exist."""


class AlreadyExistsError(KubeApiError):
    """A create call collided with an existing object."""


class ConflictError(KubeApiError):
    """An update was rejected because the object changed since it was read."""


def classify_error(ex: CommandError, context: str) -> KubeApiError:
    """
    Map a failed kubectl invocation to the matching KubeApiError subclass.

    Args:
        ex: The CommandError raised by run_command.
        context: Short description of the call, prefixed to the message.

    Returns:
        A KubeApiError (or subclass) carrying the underlying exit code and stderr.
    """
    stderr = ex.stderr or str(ex)
    message = f"{context}: {stderr}"
    if "(NotFound)" in stderr or '"reason":"NotFound"' in stderr:
        return NotFoundError(message, ex.return_code, stderr)
    if "(AlreadyExists)" in stderr or '"reason":"AlreadyExists"' in stderr:
        return AlreadyExistsError(message, ex.return_code, stderr)
    if (
        "(Conflict)" in stderr
        or '"reason":"Conflict"' in stderr
        or "the object has been modified" in stderr
    ):
        return ConflictError(message, ex.return_code, stderr)
    return KubeApiError(message, ex.return_code, stderr)


class KubectlClient:
    """An asynchronous cluster client that shells out to kubectl.

    Supports:
      - get / list of any resource kind (optionally namespaced, label-selected)
      - create / replace from a manifest dict
      - replace_raw against a subresource path (e.g. CSR approval)
    """

    def __init__(self, kubectl: str = "kubectl", kubeconfig: Optional[str] = None) -> None:
        self._kubectl = kubectl
        self._kubeconfig = kubeconfig

    def _base(self) -> List[str]:
        base = [self._kubectl]
        if self._kubeconfig:
            base += ["--kubeconfig", self._kubeconfig]
        return base

    async def _run(
        self, args: List[str], context: str, input_data: Optional[str] = None
    ) -> Dict[str, Any]:
        try:
            raw = await run_command(
                self._base() + args,
                sensitive=False,
                retries=0,
                input_data=input_data,
            )
        except CommandError as ex:
            raise classify_error(ex, context) from ex
        return json.loads(raw) if raw else {}

    async def get(
        self, kind: str, name: str, namespace: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Fetch a single object.

        Raises:
            NotFoundError: If the object does not exist.
            KubeApiError: For any other API failure.
        """
        args = ["get", kind, name, "-o", "json"]
        if namespace:
            args += ["-n", namespace]
        return await self._run(args, f"error getting {kind} {name}")

    async def list(
        self,
        kind: str,
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        List objects of one kind, optionally filtered by namespace and label selector.

        Returns:
            The `items` array of the returned List object.
        """
        args = ["get", kind, "-o", "json"]
        if namespace:
            args += ["-n", namespace]
        if label_selector:
            args += ["-l", label_selector]
        parsed = await self._run(args, f"error listing {kind}")
        items: List[Dict[str, Any]] = parsed.get("items", [])
        return items

    async def create(self, manifest: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create an object from a manifest.

        Raises:
            AlreadyExistsError: If an object with the same name exists.
        """
        return await self._run(
            ["create", "-o", "json", "-f", "-"],
            f"error creating {_describe(manifest)}",
            input_data=json.dumps(manifest),
        )

    async def replace(self, manifest: Dict[str, Any]) -> Dict[str, Any]:
        """
        Submit a full-object update. The manifest's resourceVersion is honoured,
        so a stale copy fails with ConflictError.
        """
        return await self._run(
            ["replace", "-o", "json", "-f", "-"],
            f"error updating {_describe(manifest)}",
            input_data=json.dumps(manifest),
        )

    async def replace_raw(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """
        PUT a body to a raw API path, used for subresources such as
        /apis/certificates.k8s.io/v1/certificatesigningrequests/<name>/approval.
        """
        return await self._run(
            ["replace", "--raw", path, "-f", "-"],
            f"error updating {path}",
            input_data=json.dumps(body),
        )


def _describe(manifest: Dict[str, Any]) -> str:
    meta = manifest.get("metadata", {})
    name = meta.get("name") or meta.get("generateName", "")
    return f"{manifest.get('kind', 'object')} {name}"
