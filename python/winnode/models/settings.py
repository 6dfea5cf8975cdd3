# winnode/models/settings.py

from __future__ import annotations

from pathlib import Path
from typing import Optional

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from winnode.models.retry import (
    RetryPolicy,
    CSR_RETRY,
    HOST_SUBNET_RETRY,
    CONFLICT_RETRY,
)


class BootstrapSettings(BaseSettings):
    """
    Pydantic settings for the Windows node bootstrapper.
    By default, these fields map to environment variables prefixed with `WINNODE_`.
    For example, `WINNODE_PRIVATE_KEY_PATH`, `WINNODE_MACHINE_NAMESPACE`, etc.
    Nested retry policies use a double underscore, e.g. `WINNODE_CSR_RETRY__ATTEMPTS`.
    """

    machine_namespace: str = "openshift-machine-api"
    machine_label_selector: str = "machine.openshift.io/os-id=Windows"
    node_label_selector: str = "node.openshift.io/os_id=Windows"

    user_data_secret_name: str = "windows-user-data"
    user_data_secret_namespace: str = "openshift-machine-api"
    private_key_path: str = "/etc/private-key/private-key.pem"

    cni_config_path: str = "/payload/cni/cni-conf-template.json"
    payload_dir: str = "/payload"
    configure_network: bool = True

    ssh_user: str = "Administrator"
    ssh_port: int = Field(default=22, ge=1, le=65535)

    kubectl: str = "kubectl"
    kubeconfig: Optional[str] = None

    reconcile_interval_seconds: float = Field(default=30.0, gt=0.0)

    csr_retry: RetryPolicy = CSR_RETRY
    host_subnet_retry: RetryPolicy = HOST_SUBNET_RETRY
    conflict_retry: RetryPolicy = CONFLICT_RETRY

    model_config = SettingsConfigDict(
        env_prefix="WINNODE_",
        env_nested_delimiter="__",
    )

    @classmethod
    def from_yaml_file(cls, path: str) -> BootstrapSettings:
        """
        Load settings from a YAML file. Keys in the file are passed as init
        arguments, so they take precedence over environment variables.
        """
        data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Settings file '{path}' must contain a mapping.")
        return cls(**data)
