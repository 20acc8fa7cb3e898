"""
Persistence of index bundles.
"""

from .bundle import BundleRef, BundleStore, LoadedBundle

__all__ = ["BundleRef", "BundleStore", "LoadedBundle"]
