"""Tests for the JSON manifest catalog."""

import asyncio
import json

import pytest

from dubsync_cli.catalog import manifest as manifest_module
from dubsync_cli.catalog.manifest import ManifestCatalog
from dubsync_cli.exceptions import CatalogError
from dubsync_cli.models.variant import TrackKind

from .fakes import FakeSession

KEY_HEX = "000102030405060708090a0b0c0d0e0f"


@pytest.fixture
def manifest(tmp_path):
    data = {
        "base_url": "https://cdn.test/show/",
        "episodes": {
            "s01e01": {
                "title": "The First One",
                "keys": {
                    "k1": {"hex": KEY_HEX},
                    "k2": {"url": "https://keys.test/k2"},
                },
                "variants": [
                    {
                        "locale": "ja-JP",
                        "kind": "video",
                        "key": "k1",
                        "segments": {"template": "v/{index}.ts", "count": 3},
                    },
                    {
                        "locale": "en-US",
                        "kind": "audio",
                        "key": "k2",
                        "duration": 1420.5,
                        "title": "English",
                        "segments": [
                            {"url": "en/0.ts", "byte_range": [0, 100]},
                            {
                                "url": "https://other.test/en/1.ts",
                                "iv": "0x" + "11" * 16,
                            },
                        ],
                    },
                    {
                        "locale": "en-US",
                        "kind": "subtitle",
                        "segments": ["en/subs.ass"],
                    },
                ],
            },
            "broken": {"variants": [{"locale": "fr-FR", "kind": "laser"}]},
        },
    }
    path = tmp_path / "manifest.json"
    path.write_text(json.dumps(data))
    return path


def test_resolves_variants(manifest):
    catalog = ManifestCatalog(manifest)

    variants = asyncio.run(catalog.resolve("s01e01"))

    assert [v.id for v in variants] == ["video-ja-JP", "audio-en-US", "subtitle-en-US"]
    video, audio, subtitle = variants
    assert video.kind is TrackKind.VIDEO
    assert video.segments[2].url == "https://cdn.test/show/v/2.ts"
    assert audio.segments[0].range_header == "bytes=0-99"
    assert audio.segments[1].url == "https://other.test/en/1.ts"
    assert audio.segments[1].iv == b"\x11" * 16
    assert audio.duration == 1420.5
    assert not subtitle.encrypted


def test_episode_title(manifest):
    assert asyncio.run(ManifestCatalog(manifest).episode_title("s01e01")) == (
        "The First One"
    )


def test_hex_and_url_keys(manifest):
    session = FakeSession({"https://keys.test/k2": bytes(range(16, 32))})
    catalog = ManifestCatalog(manifest, session=session)

    async def scenario():
        video, audio, subtitle = await catalog.resolve("s01e01")
        return (
            await catalog.variant_key_material(video),
            await catalog.variant_key_material(audio),
            await catalog.variant_key_material(audio),
            await catalog.variant_key_material(subtitle),
        )

    video_key, audio_key, cached, subtitle_key = asyncio.run(scenario())

    assert video_key.key == bytes.fromhex(KEY_HEX)
    assert audio_key.key == bytes(range(16, 32))
    assert cached is audio_key
    assert subtitle_key is None
    assert session.request_count("https://keys.test/k2") == 1


def test_key_fetch_without_a_session_uses_the_configured_client(
    manifest, monkeypatch
):
    created = []

    def fake_client_session(**kwargs):
        session = FakeSession({"https://keys.test/k2": bytes(range(16, 32))})
        created.append((kwargs, session))
        return session

    monkeypatch.setattr(manifest_module, "create_client_session", fake_client_session)
    catalog = ManifestCatalog(
        manifest, request_timeout=12.0, user_agent="dubsync-test/1.0"
    )

    async def scenario():
        _, audio, _ = await catalog.resolve("s01e01")
        return await catalog.variant_key_material(audio)

    assert asyncio.run(scenario()).key == bytes(range(16, 32))
    [(kwargs, session)] = created
    assert kwargs["request_timeout"] == 12.0
    assert kwargs["user_agent"] == "dubsync-test/1.0"
    assert session.closed


def test_unfetchable_key_is_a_catalog_error(manifest):
    catalog = ManifestCatalog(manifest, session=FakeSession({}))

    async def scenario():
        _, audio, _ = await catalog.resolve("s01e01")
        await catalog.variant_key_material(audio)

    with pytest.raises(CatalogError):
        asyncio.run(scenario())


@pytest.mark.parametrize("episode", ["missing", "broken"])
def test_unknown_or_invalid_episode(manifest, episode):
    with pytest.raises(CatalogError):
        asyncio.run(ManifestCatalog(manifest).resolve(episode))


def test_missing_manifest(tmp_path):
    with pytest.raises(CatalogError):
        asyncio.run(ManifestCatalog(tmp_path / "nope.json").resolve("s01e01"))
