"""Builder recipes and supervised builder instances."""

from extbuilder.lib.builder.builder import Builder, propagated_env
from extbuilder.lib.builder.connection import PeerConnection, RunMetadata, TLSConfig
from extbuilder.lib.builder.instance import DEFAULT_TERM_TIMEOUT_SECONDS, Instance

__all__ = [
    "DEFAULT_TERM_TIMEOUT_SECONDS",
    "Builder",
    "Instance",
    "PeerConnection",
    "RunMetadata",
    "TLSConfig",
    "propagated_env",
]
