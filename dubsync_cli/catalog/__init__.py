"""
Catalog Layer.
Resolves episodes into per-locale variants and provides their key material.
"""

from .base import CatalogService
from .manifest import ManifestCatalog

__all__ = ["CatalogService", "ManifestCatalog"]
