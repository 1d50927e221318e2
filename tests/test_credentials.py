import json

import pytest

from wabridge.session.credentials import CredentialStore


@pytest.mark.asyncio
async def test_load_missing_returns_none(tmp_path):
    store = CredentialStore(tmp_path / "auth")
    assert await store.load() is None
    assert not store.exists()


@pytest.mark.asyncio
async def test_save_then_load_latest(tmp_path):
    store = CredentialStore(tmp_path / "auth")
    await store.save({"noiseKey": "a"})
    await store.save({"noiseKey": "b", "me": {"id": "1@s.whatsapp.net"}})

    assert await store.load() == {"noiseKey": "b", "me": {"id": "1@s.whatsapp.net"}}
    assert json.loads(store.path.read_text(encoding="utf-8"))["noiseKey"] == "b"
    # No temp files left behind.
    assert [p.name for p in store.auth_dir.iterdir()] == ["creds.json"]


@pytest.mark.asyncio
async def test_corrupt_file_is_treated_as_unpaired(tmp_path):
    store = CredentialStore(tmp_path / "auth")
    store.auth_dir.mkdir(parents=True)
    store.path.write_text("{not json", encoding="utf-8")
    assert await store.load() is None

    store.path.write_text("[1, 2]", encoding="utf-8")
    assert await store.load() is None


@pytest.mark.asyncio
async def test_clear_removes_directory(tmp_path):
    store = CredentialStore(tmp_path / "auth")
    assert store.clear() is False
    await store.save({"k": "v"})
    await store.flush()
    assert store.clear() is True
    assert not store.auth_dir.exists()
    assert await store.load() is None
