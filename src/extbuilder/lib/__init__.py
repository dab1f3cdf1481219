"""Core extbuilder library exports."""

from extbuilder.lib.builder import Builder, Instance, PeerConnection, TLSConfig
from extbuilder.lib.types import PackageId

__all__ = [
    "Builder",
    "Instance",
    "PackageId",
    "PeerConnection",
    "TLSConfig",
]
