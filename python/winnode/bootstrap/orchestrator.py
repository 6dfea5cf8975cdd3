"""
winnode/bootstrap/orchestrator.py

The reconcile entry point. For one Machine reference:

  1) fetch the Machine (gone => nothing to do)
  2) skip unless Provisioned, with an InternalIP and a provider id
  3) derive the instance id from the provider id
  4) ensure the user data secret exists
  5) configure the instance remotely
  6) approve its CSRs, find its Node and label it as a worker
  7) optionally patch and push the CNI configuration for its host subnet
  8) record a success event

Nothing is remembered between calls; every decision is re-derived from the
objects in the cluster, so a reconcile can simply be re-run after a failure.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from winnode.bootstrap.csr import CertificateManager
from winnode.bootstrap.errors import RemoteConfigurationError
from winnode.bootstrap.events import EventRecorder, REASON_SETUP, REASON_SETUP_FAILURE
from winnode.bootstrap.network import NetworkConfigurator
from winnode.bootstrap.node import NodeRegistrar, get_instance_id
from winnode.bootstrap.remote import RemoteConfigurator
from winnode.models.cni import NetworkOptions
from winnode.models.k8s import Machine, ObjectRef
from winnode.models.retry import RetryPolicy, HOST_SUBNET_RETRY
from winnode.models.validator import parse_object
from winnode.models.vm import WindowsVM
from winnode.secrets.user_data import Signer, ensure_user_data_secret
from winnode.utils.k8s import KubectlClient, NotFoundError

logger = logging.getLogger(__name__)

PROVISIONED_PHASE = "Provisioned"
MACHINE_KIND = "machines.machine.openshift.io"


class Outcome(str, Enum):
    not_found = "not_found"
    skipped = "skipped"
    configured = "configured"


class ReconcileResult(BaseModel):
    outcome: Outcome
    instance_id: Optional[str] = None
    node_name: Optional[str] = None


def windows_vm_for(machine: Machine) -> Optional[WindowsVM]:
    """
    Return the instance to configure for an eligible Machine, or None when the
    Machine is not ready: phase unset or not Provisioned, no InternalIP, or no
    usable provider id. Never mutates anything.
    """
    if machine.status.phase != PROVISIONED_PHASE:
        return None
    address = machine.internal_ip()
    if not address:
        return None
    instance_id = get_instance_id(machine.spec.provider_id)
    if not instance_id:
        return None
    return WindowsVM(
        machine=ObjectRef(
            namespace=machine.metadata.namespace or "", name=machine.metadata.name
        ),
        instance_id=instance_id,
        address=address,
    )


class Orchestrator:
    """Turns provisioned Windows Machines into labeled worker Nodes."""

    def __init__(
        self,
        client: KubectlClient,
        signer: Optional[Signer],
        remote: RemoteConfigurator,
        *,
        certificates: Optional[CertificateManager] = None,
        registrar: Optional[NodeRegistrar] = None,
        recorder: Optional[EventRecorder] = None,
        network: Optional[NetworkConfigurator] = None,
        service_network_cidr: Optional[str] = None,
        host_subnet_retry: RetryPolicy = HOST_SUBNET_RETRY,
        user_data_secret: ObjectRef = ObjectRef(
            namespace="openshift-machine-api", name="windows-user-data"
        ),
    ) -> None:
        """
        Args:
            client: Cluster client.
            signer: Private key embedded (as its public half) in the user data secret.
            remote: Remote configuration capability.
            certificates: CSR handling; defaults to one built on `client`.
            registrar: Node lookup and labeling; defaults to one built on `client`.
            recorder: Event recording; defaults to one built on `client`.
            network: CNI patching. The network step runs only when both
                `network` and `service_network_cidr` are given.
            service_network_cidr: Cluster service network, read once at startup.
            host_subnet_retry: Polling policy for the host subnet annotation.
            user_data_secret: Where the user data secret lives.
        """
        self._client = client
        self._signer = signer
        self._remote = remote
        self._certificates = certificates or CertificateManager(client)
        self._registrar = registrar or NodeRegistrar(client)
        self._recorder = recorder or EventRecorder(client)
        self._network = network
        self._service_network_cidr = service_network_cidr
        self._host_subnet_retry = host_subnet_retry
        self._user_data_secret = user_data_secret

    async def reconcile(
        self, ref: ObjectRef, cancel: Optional[asyncio.Event] = None
    ) -> ReconcileResult:
        """
        Reconcile one Machine.

        Returns:
            not_found if the Machine is gone, skipped if it is not eligible yet,
            configured once the Node is labeled (and networked, if enabled).

        Raises:
            BootstrapError: For any fatal failure after the Machine was found
                eligible, including a user data secret that cannot be ensured;
                a warning event is recorded first.
            KubeApiError: If the Machine cannot be read for another reason.
        """
        logger.info("reconciling %s", ref)

        try:
            raw = await self._client.get(MACHINE_KIND, ref.name, ref.namespace)
        except NotFoundError:
            return ReconcileResult(outcome=Outcome.not_found)
        machine = parse_object(raw, Machine)

        vm = windows_vm_for(machine)
        if vm is None:
            logger.debug("%s is not ready for configuration", ref)
            return ReconcileResult(outcome=Outcome.skipped)

        try:
            node_name = await self._bootstrap(vm, cancel)
        except Exception as ex:
            logger.error("Windows VM %s failed to be configured: %s", vm.instance_id, ex)
            await self._recorder.warning(
                machine,
                REASON_SETUP_FAILURE,
                f"Machine {machine.metadata.name} failed to be configured",
            )
            raise

        await self._recorder.normal(
            machine,
            REASON_SETUP,
            f"Machine {machine.metadata.name} Configured Successfully",
        )
        return ReconcileResult(
            outcome=Outcome.configured, instance_id=vm.instance_id, node_name=node_name
        )

    async def _bootstrap(self, vm: WindowsVM, cancel: Optional[asyncio.Event]) -> str:
        """Steps 4-7 for an eligible instance. Returns the Node name."""
        created = await ensure_user_data_secret(
            self._client,
            self._signer,
            name=self._user_data_secret.name,
            namespace=self._user_data_secret.namespace,
        )
        if created:
            logger.info("created user data secret %s", self._user_data_secret)

        try:
            await self._remote.configure(vm)
        except Exception as ex:
            raise RemoteConfigurationError(
                f"failed to configure Windows VM {vm.instance_id}: {ex}"
            ) from ex

        await self._certificates.handle_node_csrs(cancel)

        node = await self._registrar.find_node(vm.instance_id)
        await self._registrar.apply_worker_label(node)

        if self._network is not None and self._service_network_cidr:
            host_subnet = await self._registrar.wait_for_host_subnet(
                vm.instance_id, self._host_subnet_retry, cancel
            )
            options = NetworkOptions(
                service_network_cidr=self._service_network_cidr,
                host_subnet=host_subnet,
            )
            await self._network.patch(options)
            try:
                await self._remote.configure_network(vm, self._network.cni_config_path)
            except Exception as ex:
                raise RemoteConfigurationError(
                    f"failed to configure the network of Windows VM {vm.instance_id}: {ex}"
                ) from ex

        logger.info(
            "Windows VM has joined the cluster as a worker node: %s", vm.instance_id
        )
        return node.metadata.name
