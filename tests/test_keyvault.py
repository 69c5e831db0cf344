import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from azure.core.exceptions import AzureError

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from azops import keyvault  # noqa: E402
from azops.keyvault import (  # noqa: E402
    CliSecretResolver,
    SdkSecretResolver,
    SecretRef,
    find_secret_refs,
    make_resolver,
)
from azops.shared.errors import ConfigError, ExternalCallError  # noqa: E402


def test_find_secret_refs_returns_every_occurrence():
    text = (
        "@Microsoft.KeyVault(VaultName=kv1;SecretName=s1) and "
        "@Microsoft.KeyVault(VaultName=kv1;SecretName=s1)"
    )
    refs = find_secret_refs(text)
    assert len(refs) == 2
    assert refs[0] == refs[1]
    assert refs[0].provider == "Microsoft.KeyVault"
    assert (refs[0].vault, refs[0].secret, refs[0].version) == ("kv1", "s1", None)


def test_find_secret_refs_accepts_version_and_spacing():
    (ref,) = find_secret_refs("x=@Microsoft.KeyVault(VaultName=kv; SecretName=db-pass; SecretVersion=abc123)")
    assert ref.token == "@Microsoft.KeyVault(VaultName=kv; SecretName=db-pass; SecretVersion=abc123)"
    assert ref.version == "abc123"
    assert str(ref) == "kv/db-pass@abc123"


def test_find_secret_refs_ignores_incomplete_tokens():
    assert find_secret_refs("@Microsoft.KeyVault(VaultName=kv)") == []
    assert find_secret_refs("VaultName=kv;SecretName=s") == []


def test_cli_resolver_builds_az_command():
    resolver = CliSecretResolver(az="az")
    ref = SecretRef(token="t", provider="Microsoft.KeyVault", vault="kv1", secret="s1", version="v2")
    with patch.object(keyvault, "run_json", return_value="value-1") as run_json_mock:
        assert resolver.resolve(ref) == "value-1"
    assert run_json_mock.call_args.args[0] == [
        "az", "keyvault", "secret", "show",
        "--vault-name", "kv1", "--name", "s1",
        "--version", "v2",
        "--query", "value", "--output", "json",
    ]


def test_cli_resolver_rejects_missing_value():
    resolver = CliSecretResolver(az="az")
    ref = SecretRef(token="t", provider="p", vault="kv1", secret="s1")
    with patch.object(keyvault, "run_json", return_value=None):
        with pytest.raises(ExternalCallError):
            resolver.resolve(ref)


def test_sdk_resolver_caches_one_client_per_vault():
    credential = MagicMock()
    client = MagicMock()
    client.get_secret.return_value = SimpleNamespace(value="v")
    with patch.object(keyvault, "SecretClient", return_value=client) as client_cls:
        resolver = SdkSecretResolver(credential=credential)
        for name in ("a", "b"):
            assert resolver.resolve(SecretRef(token="t", provider="p", vault="kv1", secret=name)) == "v"

    client_cls.assert_called_once_with(vault_url="https://kv1.vault.azure.net/", credential=credential)
    assert client.get_secret.call_count == 2
    client.get_secret.assert_called_with("b", version=None)


def test_sdk_resolver_wraps_azure_errors():
    client = MagicMock()
    client.get_secret.side_effect = AzureError("forbidden")
    with patch.object(keyvault, "SecretClient", return_value=client):
        resolver = SdkSecretResolver(credential=MagicMock())
        with pytest.raises(ExternalCallError, match="kv1/s1"):
            resolver.resolve(SecretRef(token="t", provider="p", vault="kv1", secret="s1"))


def test_make_resolver_selects_backend():
    assert isinstance(make_resolver("cli"), CliSecretResolver)
    assert isinstance(make_resolver("SDK"), SdkSecretResolver)
    with pytest.raises(ConfigError):
        make_resolver("vault-agent")
