"""
Secret Reference parsing and resolution.

A Secret Reference is the token App Service uses for Key Vault backed app
settings:

    @Microsoft.KeyVault(VaultName=my-vault;SecretName=db-password)
    @Microsoft.KeyVault(VaultName=my-vault;SecretName=db-password;SecretVersion=3f2a...)

Two resolvers turn a reference into its literal value: the `az` CLI (default,
uses the caller's `az login` session) and the Key Vault SDK with an
AzureCliCredential.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from azure.core.exceptions import AzureError
from azure.identity import AzureCliCredential
from azure.keyvault.secrets import SecretClient

from .shared.config import get
from .shared.errors import ConfigError, ExternalCallError
from .shared.proc import run_json
from .shared.tools import az_path

LOGGER = logging.getLogger("azops.keyvault")

SECRET_REF_RE = re.compile(
    r"@(?P<provider>[A-Za-z][\w.]*)\(\s*"
    r"VaultName=(?P<vault>[^;()\s]+)\s*;\s*"
    r"SecretName=(?P<secret>[^;()\s]+)"
    r"(?:\s*;\s*SecretVersion=(?P<version>[^;()\s]+))?"
    r"\s*\)"
)

BACKENDS = ("cli", "sdk")


@dataclass(frozen=True)
class SecretRef:
    token: str
    provider: str
    vault: str
    secret: str
    version: Optional[str] = None

    @classmethod
    def from_match(cls, m: re.Match) -> "SecretRef":
        return cls(
            token=m.group(0),
            provider=m.group("provider"),
            vault=m.group("vault"),
            secret=m.group("secret"),
            version=m.group("version"),
        )

    def __str__(self) -> str:
        return f"{self.vault}/{self.secret}" + (f"@{self.version}" if self.version else "")


def find_secret_refs(text: str) -> List[SecretRef]:
    """Every reference in text, in order; repeated tokens are returned once per occurrence."""
    return [SecretRef.from_match(m) for m in SECRET_REF_RE.finditer(text)]


class CliSecretResolver:
    def __init__(self, az: Optional[str] = None):
        self._az = az

    def resolve(self, ref: SecretRef) -> str:
        cmd = [
            self._az or az_path(),
            "keyvault", "secret", "show",
            "--vault-name", ref.vault,
            "--name", ref.secret,
        ]
        if ref.version:
            cmd += ["--version", ref.version]
        LOGGER.debug("[secret] az lookup %s", ref)
        cmd += ["--query", "value", "--output", "json"]
        value = run_json(cmd)
        if not isinstance(value, str):
            raise ExternalCallError(f"Key Vault returned no value for {ref}")
        return value


class SdkSecretResolver:
    def __init__(self, credential=None):
        self._credential = credential
        self._clients: Dict[str, SecretClient] = {}

    def _client(self, vault: str) -> SecretClient:
        client = self._clients.get(vault)
        if client is None:
            if self._credential is None:
                self._credential = AzureCliCredential()
            client = SecretClient(vault_url=f"https://{vault}.vault.azure.net/", credential=self._credential)
            self._clients[vault] = client
        return client

    def resolve(self, ref: SecretRef) -> str:
        LOGGER.debug("[secret] sdk lookup %s", ref)
        try:
            secret = self._client(ref.vault).get_secret(ref.secret, version=ref.version)
        except AzureError as exc:
            raise ExternalCallError(f"Key Vault lookup failed for {ref}: {exc}") from exc
        if secret.value is None:
            raise ExternalCallError(f"Key Vault returned no value for {ref}")
        return secret.value


def make_resolver(backend: Optional[str] = None):
    name = (backend or get("SECRET_BACKEND", "cli") or "cli").strip().lower()
    if name == "cli":
        return CliSecretResolver()
    if name == "sdk":
        return SdkSecretResolver()
    raise ConfigError(f"Unknown secret backend '{name}' (expected one of: {', '.join(BACKENDS)})")
