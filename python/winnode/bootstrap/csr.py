"""
winnode/bootstrap/csr.py

Discovers and approves the certificate signing requests a new Windows kubelet
must have approved before it can join the cluster:

  1) the bootstrap CSR, requested by the node-bootstrapper service account
  2) the node CSR, requested by "system:node:<name>"

Discovery polls the CSR list under a RetryPolicy until an unhandled request
from the expected requestor shows up. Approval appends an Approved condition
through the approval subresource and retries on update conflicts.

Known limitation: the node CSR is matched by requestor prefix only, so with
several Windows instances joining at once the first pending node CSR is
approved regardless of which instance produced it.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from winnode.bootstrap.errors import CSRApprovalError, CSRNotFoundError
from winnode.models.k8s import CSR_APPROVED, CertificateSigningRequest, CSRCondition
from winnode.models.retry import RetryPolicy, CSR_RETRY, CONFLICT_RETRY
from winnode.models.validator import parse_object
from winnode.utils.async_command_runner import CommandError
from winnode.utils.async_retry import RetryDeadlineExceeded, async_retry
from winnode.utils.k8s import ConflictError, KubectlClient

logger = logging.getLogger(__name__)

# Requestor of the CSR created by a kubelet that just got bootstrapped.
BOOTSTRAP_REQUESTOR = (
    "system:serviceaccount:openshift-machine-config-operator:node-bootstrapper"
)
# Prefix of the requestor of the CSR created by a node for its serving certificate.
NODE_REQUESTOR = "system:node:"

APPROVAL_REASON = "WindowsNodeBootstrapperApprove"
APPROVAL_MESSAGE = "This CSR was approved by the Windows node bootstrapper"

CSR_KIND = "certificatesigningrequests.certificates.k8s.io"
APPROVAL_PATH = "/apis/certificates.k8s.io/v1/certificatesigningrequests/{name}/approval"


class CertificateManager:
    """Finds and approves the CSRs of a bootstrapping Windows node.

    Holds no state about individual nodes; every call re-reads the CSR list.
    """

    def __init__(
        self,
        client: KubectlClient,
        *,
        discovery: RetryPolicy = CSR_RETRY,
        conflict: RetryPolicy = CONFLICT_RETRY,
    ) -> None:
        self._client = client
        self._discovery = discovery
        self._conflict = conflict

    async def _pending_csr(self, requestor: str) -> Optional[CertificateSigningRequest]:
        """One scan of the CSR list. Returns the first unhandled match, if any."""
        try:
            raw_items = await self._client.list(CSR_KIND)
        except CommandError as ex:
            raise CSRNotFoundError(f"unable to get CSR list: {ex}") from ex

        for raw in raw_items:
            csr = parse_object(raw, CertificateSigningRequest)
            if requestor not in csr.spec.username:
                continue
            if csr.is_handled():
                continue
            return csr
        return None

    async def find(
        self, requestor: str, cancel: Optional[asyncio.Event] = None
    ) -> CertificateSigningRequest:
        """
        Poll until a CSR whose requestor contains `requestor` and that is neither
        approved nor denied appears.

        Args:
            requestor: Substring matched against spec.username.
            cancel: Optional event that aborts the polling loop when set.

        Raises:
            CSRNotFoundError: If nothing matches within the discovery policy,
                or the CSR list cannot be read.
            RetryCancelled: If `cancel` is set while waiting.
        """

        class _NotYet(Exception):
            pass

        @async_retry(policy=self._discovery, retry_on=(_NotYet,), cancel=cancel)
        async def _scan() -> CertificateSigningRequest:
            csr = await self._pending_csr(requestor)
            if csr is None:
                raise _NotYet(requestor)
            return csr

        try:
            return await _scan()
        except (_NotYet, RetryDeadlineExceeded) as ex:
            raise CSRNotFoundError(f"CSR not found for requestor {requestor}") from ex

    async def approve(self, csr: CertificateSigningRequest) -> bool:
        """
        Approve a CSR unless it is already approved.

        The CSR is re-fetched before every attempt so the update carries the
        current resourceVersion; conflicting updates are retried under the
        conflict policy.

        Returns:
            True if an approval was submitted, False if it was already approved.
        """
        if csr.is_approved():
            return False

        name = csr.metadata.name

        @async_retry(policy=self._conflict, retry_on=(ConflictError,), noisy=True)
        async def _submit() -> bool:
            current = parse_object(
                await self._client.get(CSR_KIND, name), CertificateSigningRequest
            )
            if current.is_approved():
                return False
            current.status.conditions.append(
                CSRCondition(
                    type=CSR_APPROVED,
                    status="True",
                    reason=APPROVAL_REASON,
                    message=APPROVAL_MESSAGE,
                    last_update_time=datetime.now(timezone.utc).strftime(
                        "%Y-%m-%dT%H:%M:%SZ"
                    ),
                )
            )
            await self._client.replace_raw(
                APPROVAL_PATH.format(name=name), current.to_manifest()
            )
            return True

        try:
            submitted = await _submit()
        except CommandError as ex:
            raise CSRApprovalError(f"error approving CSR {name}: {ex}") from ex
        if submitted:
            logger.info("Approved CSR %s requested by %s", name, csr.spec.username)
        return submitted

    async def handle(
        self, requestor: str, cancel: Optional[asyncio.Event] = None
    ) -> CertificateSigningRequest:
        """
        Find the pending CSR for `requestor` and approve it.

        Raises:
            CSRNotFoundError, CSRApprovalError: wrapped with the requestor filter.
        """
        try:
            csr = await self.find(requestor, cancel)
        except CSRNotFoundError as ex:
            raise CSRNotFoundError(f"error finding CSR for {requestor}: {ex}") from ex
        try:
            await self.approve(csr)
        except CSRApprovalError as ex:
            raise CSRApprovalError(f"error approving CSR for {requestor}: {ex}") from ex
        return csr

    async def handle_node_csrs(self, cancel: Optional[asyncio.Event] = None) -> None:
        """Approve the bootstrap CSR, then the node CSR."""
        await self.handle(BOOTSTRAP_REQUESTOR, cancel)
        await self.handle(NODE_REQUESTOR, cancel)
