from .core import (
    Backoff,
    BackoffConfig,
    retry_call,
    env_int,
    env_str,
    env_bool,
)
from .hostname import (
    Allocator,
    GapFillingAllocator,
    instance_id_hostname,
    lowest_free_id,
    sequential_hostname,
    sequential_suffix,
)
from .identity import IdentityResolver, MetadataClient, compute_region
from .tags import EC2TagStore, MemoryTagStore, TagStore

__all__ = [
    "Backoff",
    "BackoffConfig",
    "retry_call",
    "env_int",
    "env_str",
    "env_bool",
    "Allocator",
    "GapFillingAllocator",
    "instance_id_hostname",
    "lowest_free_id",
    "sequential_hostname",
    "sequential_suffix",
    "IdentityResolver",
    "MetadataClient",
    "compute_region",
    "EC2TagStore",
    "MemoryTagStore",
    "TagStore",
]
