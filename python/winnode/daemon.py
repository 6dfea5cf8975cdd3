"""
winnode/daemon.py

A daemon that:
  1) Loads settings (environment, optionally a YAML file).
  2) Loads the private key once, or fails => K8s restarts the container.
  3) Reads the cluster service network once, or fails => K8s restarts.
  4) Each loop iteration:
       - Lists Windows Machines in the machine namespace.
       - Reconciles each one; a failing Machine is logged and retried next round.
       - Sleeps, or stops early when SIGTERM/SIGINT arrives.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from winnode.bootstrap.csr import CertificateManager
from winnode.bootstrap.errors import BootstrapError
from winnode.bootstrap.events import EventRecorder
from winnode.bootstrap.network import NetworkConfigurator, get_service_network_cidr
from winnode.bootstrap.node import NodeRegistrar
from winnode.bootstrap.orchestrator import MACHINE_KIND, Orchestrator
from winnode.bootstrap.remote import SSHRemoteConfigurator, default_plan
from winnode.models.k8s import ObjectRef
from winnode.models.settings import BootstrapSettings
from winnode.secrets.user_data import load_signer
from winnode.utils.async_command_runner import CommandError
from winnode.utils.async_retry import RetryCancelled
from winnode.utils.k8s import KubectlClient

logger = logging.getLogger(__name__)


async def build_orchestrator(
    settings: BootstrapSettings, client: KubectlClient
) -> Orchestrator:
    """Wire the bootstrap components from settings."""
    signer = load_signer(settings.private_key_path)
    private_key = Path(settings.private_key_path).read_text(encoding="utf-8")

    network: Optional[NetworkConfigurator] = None
    service_cidr: Optional[str] = None
    if settings.configure_network:
        service_cidr = await get_service_network_cidr(client)
        logger.info("Cluster service network: %s", service_cidr)
        network = NetworkConfigurator(settings.cni_config_path)

    return Orchestrator(
        client,
        signer,
        SSHRemoteConfigurator(
            private_key,
            default_plan(settings.payload_dir),
            user=settings.ssh_user,
            port=settings.ssh_port,
        ),
        certificates=CertificateManager(
            client, discovery=settings.csr_retry, conflict=settings.conflict_retry
        ),
        registrar=NodeRegistrar(
            client,
            selector=settings.node_label_selector,
            conflict=settings.conflict_retry,
        ),
        recorder=EventRecorder(client),
        network=network,
        service_network_cidr=service_cidr,
        host_subnet_retry=settings.host_subnet_retry,
        user_data_secret=ObjectRef(
            namespace=settings.user_data_secret_namespace,
            name=settings.user_data_secret_name,
        ),
    )


async def list_machine_refs(
    client: KubectlClient, settings: BootstrapSettings
) -> List[ObjectRef]:
    items = await client.list(
        MACHINE_KIND,
        namespace=settings.machine_namespace,
        label_selector=settings.machine_label_selector,
    )
    return [
        ObjectRef(
            namespace=item["metadata"].get("namespace", settings.machine_namespace),
            name=item["metadata"]["name"],
        )
        for item in items
    ]


async def run_once(
    orchestrator: Orchestrator,
    refs: List[ObjectRef],
    cancel: Optional[asyncio.Event] = None,
) -> int:
    """
    Reconcile each Machine sequentially.

    Returns:
        The number of Machines whose reconcile failed.
    """
    failures = 0
    for ref in refs:
        if cancel is not None and cancel.is_set():
            break
        try:
            result = await orchestrator.reconcile(ref, cancel)
            logger.info("%s => %s", ref, result.outcome.value)
        except RetryCancelled:
            logger.info("reconcile of %s cancelled", ref)
            break
        except Exception:
            # one Machine failing must not stop the rest of the pass
            failures += 1
            logger.exception("reconcile of %s failed", ref)
    return failures


async def main_async(
    settings: BootstrapSettings, once: bool = False, machine: Optional[str] = None
) -> int:
    """Main daemon logic. Returns a process exit code."""
    client = KubectlClient(kubectl=settings.kubectl, kubeconfig=settings.kubeconfig)
    orchestrator = await build_orchestrator(settings, client)

    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, cancel.set)
        except NotImplementedError:
            # add_signal_handler is unavailable on some platforms
            pass

    if machine:
        namespace, _, name = machine.rpartition("/")
        ref = ObjectRef(namespace=namespace or settings.machine_namespace, name=name)
        return 1 if await run_once(orchestrator, [ref], cancel) else 0

    while not cancel.is_set():
        try:
            refs = await list_machine_refs(client, settings)
        except CommandError as ex:
            logger.error("error listing machines: %s", ex)
            refs = []
        failures = await run_once(orchestrator, refs, cancel)
        if once:
            return 1 if failures else 0
        try:
            await asyncio.wait_for(
                cancel.wait(), timeout=settings.reconcile_interval_seconds
            )
        except asyncio.TimeoutError:
            pass

    logger.info("Daemon shutting down (cancelled).")
    return 0


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Bootstrap provisioned Windows Machines into worker Nodes."
    )
    parser.add_argument("--config", help="YAML settings file (overrides env vars).")
    parser.add_argument(
        "--once", action="store_true", help="Run a single reconcile round and exit."
    )
    parser.add_argument(
        "--machine",
        help="Reconcile a single Machine, given as <namespace>/<name> or <name>.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = (
        BootstrapSettings.from_yaml_file(args.config)
        if args.config
        else BootstrapSettings()
    )
    try:
        return asyncio.run(main_async(settings, once=args.once, machine=args.machine))
    except (BootstrapError, CommandError) as ex:
        logger.error("startup failed: %s", ex)
        return 1


if __name__ == "__main__":
    sys.exit(main())
