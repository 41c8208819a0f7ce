import os
import stat

import pytest

from album_core.errors import ConfigurationError, ValidationError
from album_core.models import RemoteCredentials
from deploy_tool.credentials import (
    FileCredentialsStore, validate_account_id, validate_api_token, validate_credentials,
    validate_domain,
)

from conftest import ACCOUNT_ID, API_TOKEN


def test_validate_api_token():
    assert validate_api_token(API_TOKEN) == API_TOKEN
    for bad in ("short", API_TOKEN + "x", "!" * 40, ""):
        with pytest.raises(ValidationError):
            validate_api_token(bad)


def test_validate_account_id():
    assert validate_account_id(ACCOUNT_ID.upper()) == ACCOUNT_ID.upper()
    with pytest.raises(ValidationError):
        validate_account_id("g" * 32)


@pytest.mark.parametrize("domain", ["example.com", "music.example.co.uk", "a-b.io"])
def test_validate_domain_accepts(domain):
    assert validate_domain(domain) == domain


@pytest.mark.parametrize("domain", [
    "", "localhost", ".example.com", "example.com.", "-bad.com", "bad-.com",
    "exa_mple.com", "a..com", ("a" * 64) + ".com",
])
def test_validate_domain_rejects(domain):
    with pytest.raises(ValidationError):
        validate_domain(domain)


def test_validate_credentials_requires_key_pair(credentials):
    lonely = RemoteCredentials(api_token=API_TOKEN, account_id=ACCOUNT_ID,
                               r2_access_key_id=credentials.r2_access_key_id)
    with pytest.raises(ValidationError, match="together"):
        validate_credentials(lonely)


def test_store_round_trip(tmp_path, credentials):
    store = FileCredentialsStore(tmp_path / "conf" / "config.toml")
    assert not store.exists()
    assert store.load() is None

    path = store.save(credentials)

    assert path.exists()
    assert store.load() == credentials
    assert "[cloudflare]" in path.read_text()


@pytest.mark.skipif(os.name != "posix", reason="POSIX permissions")
def test_store_file_is_owner_only(tmp_path, credentials):
    path = FileCredentialsStore(tmp_path / "config.toml").save(credentials)
    assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_store_omits_unset_optional_fields(tmp_path):
    store = FileCredentialsStore(tmp_path / "config.toml")
    store.save(RemoteCredentials(api_token=API_TOKEN, account_id=ACCOUNT_ID))
    text = store.path.read_text()
    assert "base_domain" not in text
    assert store.load().base_domain is None


def test_store_rejects_invalid_credentials(tmp_path):
    store = FileCredentialsStore(tmp_path / "config.toml")
    with pytest.raises(ValidationError):
        store.save(RemoteCredentials(api_token="nope", account_id=ACCOUNT_ID))
    assert not store.exists()


@pytest.mark.parametrize("content", [
    "not = [valid",
    '[other]\nkey = "x"\n',
    '[cloudflare]\napi_token = "x"\n',
])
def test_store_load_errors(tmp_path, content):
    path = tmp_path / "config.toml"
    path.write_text(content)
    with pytest.raises(ConfigurationError):
        FileCredentialsStore(path).load()
