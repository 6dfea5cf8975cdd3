"""
winnode/bootstrap/network.py

Cluster network inputs and the CNI configuration patch for Windows nodes.

 - get_service_network_cidr: read the cluster's service network once at startup
 - patch_cni_config: rewrite the CNI template for one node's host subnet

The two policies carrying the service network are located by their value.Type
(OutBoundNAT and ROUTE) rather than by position. A template missing either of
them is rejected before anything is written.
"""

from __future__ import annotations

import json
import logging

import aiofiles
from pydantic import ValidationError

from winnode.bootstrap.errors import CNIConfigError, ClusterNetworkError
from winnode.models.cni import (
    CNIConfig,
    NetworkOptions,
    OUTBOUND_NAT_POLICY,
    ROUTE_POLICY,
)
from winnode.utils.async_command_runner import CommandError
from winnode.utils.k8s import KubectlClient

logger = logging.getLogger(__name__)

NETWORK_CONFIG_KIND = "networks.config.openshift.io"


async def get_service_network_cidr(client: KubectlClient) -> str:
    """
    Return the first service network CIDR of the cluster network config object.

    Raises:
        ClusterNetworkError: If the object cannot be read or lists no service network.
    """
    try:
        network = await client.get(NETWORK_CONFIG_KIND, "cluster")
    except CommandError as ex:
        raise ClusterNetworkError(f"error getting cluster network object: {ex}") from ex

    service_networks = network.get("spec", {}).get("serviceNetwork") or []
    if not service_networks:
        raise ClusterNetworkError("cluster network object has no serviceNetwork entries")
    return str(service_networks[0])


def apply_network_options(config: CNIConfig, options: NetworkOptions) -> CNIConfig:
    """
    Set the host subnet and service network on a parsed CNI document, in place.

    Raises:
        CNIConfigError: If the OutBoundNAT or ROUTE policy is missing.
    """
    nat = config.find_policy(OUTBOUND_NAT_POLICY)
    if nat is None:
        raise CNIConfigError(f"CNI config has no {OUTBOUND_NAT_POLICY} policy")
    route = config.find_policy(ROUTE_POLICY)
    if route is None:
        raise CNIConfigError(f"CNI config has no {ROUTE_POLICY} policy")

    ipam = config.ipam
    ipam.subnet = options.host_subnet
    # reassigning marks ipam as set, so it is written even if the template lacked it
    config.ipam = ipam
    if nat.value.exception_list:
        nat.value.exception_list[0] = options.service_network_cidr
    else:
        nat.value.exception_list = [options.service_network_cidr]
    route.value.destination_prefix = options.service_network_cidr
    return config


class NetworkConfigurator:
    """Patches the CNI configuration template at a fixed path.

    The file is read, patched and overwritten without locking; a single
    bootstrapper process is expected to own it.
    """

    def __init__(self, cni_config_path: str) -> None:
        self.cni_config_path = cni_config_path

    async def read(self) -> CNIConfig:
        try:
            async with aiofiles.open(self.cni_config_path, "r", encoding="utf-8") as f:
                content = await f.read()
        except OSError as ex:
            raise CNIConfigError(
                f"error opening CNI config file from {self.cni_config_path}"
            ) from ex
        try:
            return CNIConfig.model_validate(json.loads(content))
        except (json.JSONDecodeError, ValidationError) as ex:
            raise CNIConfigError(f"can't decode config JSON: {ex}") from ex

    async def write(self, config: CNIConfig) -> None:
        try:
            payload = json.dumps(
                config.model_dump(by_alias=True, exclude_unset=True), indent=2
            )
        except (TypeError, ValueError) as ex:
            raise CNIConfigError(f"can't encode modified config JSON: {ex}") from ex
        try:
            async with aiofiles.open(self.cni_config_path, "w", encoding="utf-8") as f:
                await f.write(payload)
        except OSError as ex:
            raise CNIConfigError(
                f"can't write JSON config file to {self.cni_config_path}"
            ) from ex

    async def patch(self, options: NetworkOptions) -> CNIConfig:
        """
        Rewrite the template with the given service network and host subnet.

        Raises:
            CNIConfigError: On read, decode, missing-policy, encode or write failure.
        """
        config = apply_network_options(await self.read(), options)
        await self.write(config)
        logger.info(
            "Patched %s with host subnet %s and service network %s",
            self.cni_config_path,
            options.host_subnet,
            options.service_network_cidr,
        )
        return config
