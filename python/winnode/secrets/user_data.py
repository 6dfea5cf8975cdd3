"""
winnode/secrets/user_data.py

Builds and creates the one-time user data secret consumed by the machine API
when it launches Windows instances. The secret embeds a PowerShell script that
enables OpenSSH on first boot and authorizes the public half of the
bootstrapper's private key, so the remote configuration step can log in.

 - load_signer: read the private key (PEM or OpenSSH format)
 - authorized_key: public key in authorized_keys format
 - render_user_data: the PowerShell init script
 - ensure_user_data_secret: create-if-absent
"""

from __future__ import annotations

import base64
import logging
import textwrap
from pathlib import Path
from typing import Optional, Union

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa

from winnode.bootstrap.errors import UserDataError
from winnode.models.k8s import ObjectMeta, Secret
from winnode.utils.async_command_runner import CommandError
from winnode.utils.k8s import AlreadyExistsError, KubectlClient, NotFoundError

logger = logging.getLogger(__name__)

Signer = Union[
    rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey, ed25519.Ed25519PrivateKey
]

USER_DATA_KEY = "userData"


def load_signer(private_key_path: str) -> Signer:
    """
    Load the private key used to reach Windows instances over SSH.

    Both PEM (PKCS#1/PKCS#8) and OpenSSH private key formats are accepted.

    Raises:
        UserDataError: If the file is missing, unreadable, or not a supported key.
    """
    try:
        key_bytes = Path(private_key_path).read_bytes()
    except OSError as ex:
        raise UserDataError(
            f"failed to find private key from path: {private_key_path}"
        ) from ex

    try:
        if b"OPENSSH PRIVATE KEY" in key_bytes:
            key = serialization.load_ssh_private_key(key_bytes, password=None)
        else:
            key = serialization.load_pem_private_key(key_bytes, password=None)
    except (ValueError, TypeError) as ex:
        raise UserDataError(f"unable to parse private key: {private_key_path}") from ex

    if not isinstance(
        key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey, ed25519.Ed25519PrivateKey)
    ):
        raise UserDataError(
            f"unsupported private key type {type(key).__name__}: {private_key_path}"
        )
    return key


def authorized_key(signer: Optional[Signer]) -> str:
    """
    Return the signer's public key as a single authorized_keys line.

    Raises:
        UserDataError: If no signer is given or no public key can be derived.
    """
    if signer is None:
        raise UserDataError("failed to retrieve signer for private key")
    try:
        public = signer.public_key().public_bytes(
            serialization.Encoding.OpenSSH, serialization.PublicFormat.OpenSSH
        )
    except ValueError as ex:
        raise UserDataError("failed to retrieve public key using signer") from ex
    if not public:
        raise UserDataError("failed to retrieve public key using signer")
    return public.decode("ascii").strip()


def render_user_data(public_key: str) -> str:
    """
    Render the PowerShell script run by the instance on first boot.

    The sshd service is started once to create the default sshd_config, which
    is then edited to allow key-based logins from the user's profile and
    restarted for the changes to take effect.
    """
    script = textwrap.dedent(
        """\
        <powershell>
        Add-WindowsCapability -Online -Name OpenSSH.Server~~~~0.0.1.0
        $firewallRuleName = "ContainerLogsPort"
        $containerLogsPort = "10250"
        New-NetFirewallRule -DisplayName $firewallRuleName -Direction Inbound -Action Allow -Protocol TCP -LocalPort $containerLogsPort -EdgeTraversalPolicy Allow
        Enable-PSRemoting -Force
        Install-PackageProvider -Name NuGet -MinimumVersion 2.8.5.201 -Force
        Install-Module -Force OpenSSHUtils
        Set-Service -Name ssh-agent -StartupType 'Automatic'
        Set-Service -Name sshd -StartupType 'Automatic'
        Start-Service ssh-agent
        Start-Service sshd
        $pubKeyConf = (Get-Content -path C:\\ProgramData\\ssh\\sshd_config) -replace '#PubkeyAuthentication yes','PubkeyAuthentication yes'
        $pubKeyConf | Set-Content -Path C:\\ProgramData\\ssh\\sshd_config
        $passwordConf = (Get-Content -path C:\\ProgramData\\ssh\\sshd_config) -replace '#PasswordAuthentication yes','PasswordAuthentication yes'
        $passwordConf | Set-Content -Path C:\\ProgramData\\ssh\\sshd_config
        $authFileConf = (Get-Content -path C:\\ProgramData\\ssh\\sshd_config) -replace 'AuthorizedKeysFile __PROGRAMDATA__/ssh/administrators_authorized_keys','#AuthorizedKeysFile __PROGRAMDATA__/ssh/administrators_authorized_keys'
        $authFileConf | Set-Content -Path C:\\ProgramData\\ssh\\sshd_config
        $pubKeyLocationConf = (Get-Content -path C:\\ProgramData\\ssh\\sshd_config) -replace 'Match Group administrators','#Match Group administrators'
        $pubKeyLocationConf | Set-Content -Path C:\\ProgramData\\ssh\\sshd_config
        Restart-Service sshd
        New-item -Path $env:USERPROFILE -Name .ssh -ItemType Directory -force
        echo "__PUBLIC_KEY__"| Out-File $env:USERPROFILE\\.ssh\\authorized_keys -Encoding ascii
        </powershell>
        <persist>true</persist>
        """
    )
    return script.replace("__PUBLIC_KEY__", public_key)


def build_user_data_secret(signer: Optional[Signer], name: str, namespace: str) -> Secret:
    """Build (but do not submit) the user data Secret for the given signer."""
    script = render_user_data(authorized_key(signer))
    return Secret(
        metadata=ObjectMeta(name=name, namespace=namespace),
        data={USER_DATA_KEY: base64.b64encode(script.encode("utf-8")).decode("ascii")},
    )


async def ensure_user_data_secret(
    client: KubectlClient,
    signer: Optional[Signer],
    name: str = "windows-user-data",
    namespace: str = "openshift-machine-api",
) -> bool:
    """
    Create the user data secret unless it already exists.

    Args:
        client: Cluster client.
        signer: Private key whose public half is embedded in the script.
        name: Secret name.
        namespace: Secret namespace.

    Returns:
        True if the secret was created by this call, False if it already existed.

    Raises:
        UserDataError: If the public key cannot be derived, or the lookup or
            creation fails for any reason other than the secret already existing.
    """
    secret = build_user_data_secret(signer, name, namespace)

    try:
        await client.get("secret", name, namespace)
        return False
    except NotFoundError:
        pass
    except CommandError as ex:
        raise UserDataError(
            f"error checking for user data secret {namespace}/{name}: {ex}"
        ) from ex

    logger.info("Creating a new Secret %s/%s", namespace, name)
    try:
        await client.create(secret.to_manifest())
    except AlreadyExistsError:
        return False
    except CommandError as ex:
        raise UserDataError(
            f"error creating windows user data secret {namespace}/{name}: {ex}"
        ) from ex
    return True
