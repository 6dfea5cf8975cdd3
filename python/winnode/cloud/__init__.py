"""
winnode.cloud

Unified aggregator import for:
- PlatformType and the resolver contract
- The per-platform resolver dispatch (AWS today)
"""

from typing import Callable, Dict

from winnode.bootstrap.errors import CloudResourceError
from winnode.cloud.aws import AWSInfrastructureResolver
from winnode.cloud.base import (
    CloudInfrastructureResolver,
    CloudResources,
    ClusterInfrastructure,
    PlatformType,
    get_infrastructure,
)


def _aws_resolver(
    infra: ClusterInfrastructure, instance_type: str
) -> CloudInfrastructureResolver:
    if not infra.region:
        raise CloudResourceError("AWS platform status does not report a region")
    return AWSInfrastructureResolver(infra.region, instance_type)


RESOLVER_MAP: Dict[
    PlatformType, Callable[[ClusterInfrastructure, str], CloudInfrastructureResolver]
] = {
    PlatformType.aws: _aws_resolver,
}


def new_resolver(
    infra: ClusterInfrastructure, instance_type: str
) -> CloudInfrastructureResolver:
    """
    Build the resolver for the cluster's platform.

    Raises:
        CloudResourceError: If the platform is not supported.
    """
    if infra.platform not in RESOLVER_MAP:
        raise CloudResourceError(
            f"the '{infra.platform.value}' cloud provider is not supported"
        )
    return RESOLVER_MAP[infra.platform](infra, instance_type)


__all__ = [
    "AWSInfrastructureResolver",
    "CloudInfrastructureResolver",
    "CloudResources",
    "ClusterInfrastructure",
    "PlatformType",
    "get_infrastructure",
    "new_resolver",
    "RESOLVER_MAP",
]
