"""
A catalog backed by a local JSON manifest describing episodes and their variants.

Manifest layout::

    {
      "base_url": "https://cdn.example.com/show/",
      "episodes": {
        "s01e01": {
          "title": "Episode 1",
          "keys": {"k1": {"hex": "00112233..."}, "k2": {"url": "https://..."}},
          "variants": [
            {"locale": "ja-JP", "kind": "audio", "key": "k1", "duration": 1420.5,
             "segments": {"template": "ja/seg-{index}.ts", "count": 300}},
            {"locale": "en-US", "kind": "subtitle",
             "segments": [{"url": "en/subs.ass"}]}
          ]
        }
      }
    }

Segment entries may also carry `size`, `byte_range` ([offset, length]) and a
hex `iv`. Relative URLs are resolved against `base_url`.
"""

import json
import logging
from pathlib import Path
from typing import Any
from urllib.parse import urljoin

import aiofiles
import aiohttp

from dubsync_cli.exceptions import CatalogError
from dubsync_cli.media.fetcher import create_client_session
from dubsync_cli.models.variant import DecryptionKey, SegmentRef, TrackKind, Variant

log = logging.getLogger(__name__)


class ManifestCatalog:
    """Implements `CatalogService` on top of a manifest file."""

    def __init__(
        self,
        manifest_path: Path,
        session: aiohttp.ClientSession | None = None,
        proxy: str | None = None,
        request_timeout: float = 90.0,
        user_agent: str = "",
    ):
        self.manifest_path = Path(manifest_path)
        self.session = session
        self.proxy = proxy or None
        self.request_timeout = request_timeout
        self.user_agent = user_agent
        self._manifest: dict[str, Any] | None = None
        self._key_specs: dict[str, dict[str, Any]] = {}
        self._keys: dict[str, DecryptionKey] = {}

    async def _load(self) -> dict[str, Any]:
        if self._manifest is None:
            try:
                async with aiofiles.open(self.manifest_path, encoding="utf-8") as f:
                    content = await f.read()
                manifest = json.loads(content)
            except FileNotFoundError as e:
                raise CatalogError(
                    f"Manifest not found: {self.manifest_path}"
                ) from e
            except (OSError, json.JSONDecodeError) as e:
                raise CatalogError(
                    f"Could not read manifest {self.manifest_path}: {e}"
                ) from e
            if not isinstance(manifest, dict) or not isinstance(
                manifest.get("episodes"), dict
            ):
                raise CatalogError(
                    f"Manifest {self.manifest_path} has no 'episodes' mapping."
                )
            self._manifest = manifest
        return self._manifest

    async def _episode(self, episode_id: str) -> dict[str, Any]:
        manifest = await self._load()
        episode = manifest["episodes"].get(episode_id)
        if not isinstance(episode, dict):
            available = ", ".join(sorted(manifest["episodes"])) or "none"
            raise CatalogError(
                f"Episode '{episode_id}' is not in the manifest "
                f"(available: {available})."
            )
        return episode

    async def episode_title(self, episode_id: str) -> str | None:
        episode = await self._episode(episode_id)
        return episode.get("title")

    async def resolve(self, episode_id: str) -> list[Variant]:
        """
        Builds the variants of an episode.

        Raises:
            CatalogError: The episode is unknown or its description is invalid.
        """
        manifest = await self._load()
        episode = await self._episode(episode_id)
        base_url = manifest.get("base_url", "")
        self._key_specs.update(episode.get("keys", {}))

        variants = []
        for position, entry in enumerate(episode.get("variants", [])):
            try:
                variant = self._build_variant(entry, base_url)
            except (KeyError, TypeError, ValueError) as e:
                raise CatalogError(
                    f"Invalid variant #{position} in episode '{episode_id}': {e}"
                ) from e
            if variant.key_ref and variant.key_ref not in self._key_specs:
                raise CatalogError(
                    f"Variant '{variant.id}' references unknown key "
                    f"'{variant.key_ref}'."
                )
            variants.append(variant)

        if not variants:
            raise CatalogError(f"Episode '{episode_id}' lists no variants.")
        ids = [v.id for v in variants]
        if len(set(ids)) != len(ids):
            raise CatalogError(f"Episode '{episode_id}' has duplicate variant ids.")

        log.debug(
            f"Resolved '{episode_id}' into {len(variants)} variants: {', '.join(ids)}"
        )
        return variants

    @staticmethod
    def _build_segments(spec: Any, base_url: str) -> tuple[SegmentRef, ...]:
        if isinstance(spec, dict):
            template = spec["template"]
            return tuple(
                SegmentRef(
                    index=i,
                    url=urljoin(base_url, template.format(index=i)),
                )
                for i in range(int(spec["count"]))
            )

        segments = []
        for i, item in enumerate(spec):
            if isinstance(item, str):
                item = {"url": item}
            byte_range = item.get("byte_range")
            iv = item.get("iv")
            segments.append(
                SegmentRef(
                    index=int(item.get("index", i)),
                    url=urljoin(base_url, item["url"]),
                    size_hint=item.get("size"),
                    byte_range=tuple(byte_range) if byte_range else None,
                    iv=bytes.fromhex(iv.removeprefix("0x")) if iv else None,
                )
            )
        return tuple(segments)

    def _build_variant(self, entry: dict[str, Any], base_url: str) -> Variant:
        return Variant(
            locale=entry["locale"],
            kind=TrackKind(entry["kind"]),
            segments=self._build_segments(entry["segments"], base_url),
            key_ref=entry.get("key"),
            duration=float(entry.get("duration", 0.0)),
            variant_id=entry.get("id", ""),
            title=entry.get("title"),
            release=entry.get("release", ""),
            extension=entry.get("extension", ""),
        )

    async def variant_key_material(self, variant: Variant) -> DecryptionKey | None:
        """
        Returns the AES key for an encrypted variant, fetching it if the
        manifest only gives a key URL. Unencrypted variants yield None.

        Raises:
            CatalogError: The key is missing, malformed or cannot be fetched.
        """
        if variant.key_ref is None:
            return None
        if variant.key_ref in self._keys:
            return self._keys[variant.key_ref]

        spec = self._key_specs.get(variant.key_ref)
        if spec is None:
            raise CatalogError(f"No key material for '{variant.key_ref}'.")

        if "hex" in spec:
            try:
                raw = bytes.fromhex(spec["hex"].removeprefix("0x"))
            except ValueError as e:
                raise CatalogError(f"Key '{variant.key_ref}' is not valid hex.") from e
        elif "url" in spec:
            raw = await self._fetch_key(spec["url"])
        else:
            raise CatalogError(f"Key '{variant.key_ref}' has neither 'hex' nor 'url'.")

        try:
            key = DecryptionKey(key_id=variant.key_ref, key=raw)
        except ValueError as e:
            raise CatalogError(str(e)) from e
        self._keys[variant.key_ref] = key
        return key

    async def _fetch_key(self, url: str) -> bytes:
        owns_session = self.session is None
        session = self.session or create_client_session(
            max_workers=1,
            request_timeout=self.request_timeout,
            user_agent=self.user_agent,
        )
        try:
            async with session.get(url, proxy=self.proxy) as response:
                response.raise_for_status()
                return await response.read()
        except aiohttp.ClientError as e:
            raise CatalogError(f"Could not fetch key from {url}: {e}") from e
        finally:
            if owns_session:
                await session.close()
