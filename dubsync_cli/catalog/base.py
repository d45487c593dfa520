"""
The interface every episode catalog exposes to the acquisition pipeline.
"""

from typing import Protocol

from dubsync_cli.models.variant import DecryptionKey, Variant


class CatalogService(Protocol):
    """
    Resolves an episode into its downloadable variants and hands out the key
    material for encrypted ones. Implementations raise `CatalogError` when an
    episode or key cannot be resolved.
    """

    async def resolve(self, episode_id: str) -> list[Variant]: ...

    async def episode_title(self, episode_id: str) -> str | None: ...

    async def variant_key_material(self, variant: Variant) -> DecryptionKey | None: ...
