"""Hosting provider adapters for AUTOCREA."""

from autocrea.providers.base import BaseProviderAdapter
from autocrea.providers.netlify import NetlifyAdapter
from autocrea.providers.railway import RailwayAdapter
from autocrea.providers.registry import (
    ProviderRegistry,
    build_registry,
)
from autocrea.providers.vercel import VercelAdapter

__all__ = [
    "BaseProviderAdapter",
    "ProviderRegistry",
    "build_registry",
    "VercelAdapter",
    "NetlifyAdapter",
    "RailwayAdapter",
]
