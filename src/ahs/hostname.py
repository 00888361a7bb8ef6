from __future__ import annotations

import re
import time
from typing import Callable, Iterable, Optional, Protocol, Tuple

import structlog

from .core import Backoff, retry_call
from .errors import (
    GroupTagAmbiguous,
    GroupTagMissing,
    InvalidSequentialTagValue,
    InvalidSuffixLength,
    RemoteCallError,
)
from .tags import TagStore

log = structlog.get_logger(__name__)

# Instance IDs carry a 2-character prefix ("i-") that is never used.
INSTANCE_ID_PREFIX_LEN = 2

_SEQ_RE = re.compile(r".*-(\d+)")
_ID_RE = re.compile(r"[0-9]+")


# --------------------------
# Instance-ID suffix
# --------------------------
def instance_id_hostname(base: str, instance_id: str, separator: str, length: int) -> str:
    """
    "web" + "i-0123456789abcdef0" (length 5) -> "web-01234"

    A base that already ends with the suffix is returned as is, so running
    twice never stacks suffixes.
    """
    log.info("Computing hostname with truncated instance-id")

    usable = len(instance_id) - INSTANCE_ID_PREFIX_LEN
    if length < 1 or length > usable:
        raise InvalidSuffixLength(
            f"Cannot keep {length} characters of instance-id '{instance_id}' "
            f"(between 1 and {max(usable, 0)} are available)"
        )

    suffix = instance_id[INSTANCE_ID_PREFIX_LEN:INSTANCE_ID_PREFIX_LEN + length]
    if base.endswith(suffix):
        log.info(f"Instance ID already found in the instance tag: '{base}', reusing this value")
        return base

    hostname = base + separator + suffix
    log.info(f"Computed unique hostname: '{hostname}'")
    return hostname


# --------------------------
# Sequential allocation
# --------------------------
def sequential_suffix(name: str) -> Optional[int]:
    """
    Extract an already allocated id from a name: "web-7" -> 7, "web" -> None
    """
    m = _SEQ_RE.fullmatch(name or "")
    if m:
        return int(m.group(1))
    return None


def lowest_free_id(used: Iterable[int]) -> int:
    """Smallest positive integer missing from used."""
    ids = sorted(set(used))
    for i, v in enumerate(ids):
        if v != i + 1:
            return i + 1
    return len(ids) + 1


class Allocator(Protocol):
    def allocate(self, instance_id: str) -> int:
        ...


class GapFillingAllocator:
    """
    Hands out the lowest sequential id not claimed by any instance of the
    group, so ids freed by terminated instances are reused.

    No lock is taken: two instances reading the group before either writes
    its tag will pick the same id.
    """

    def __init__(
        self,
        store: TagStore,
        group_tag: str,
        sequential_id_tag: str,
        backoff: Backoff,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.group_tag = group_tag
        self.sequential_id_tag = sequential_id_tag
        self.backoff = backoff
        self.sleep = sleep

    def _remote(self, fn, describe: str):
        return retry_call(fn, backoff=self.backoff, retry_on=(RemoteCallError,), describe=describe, sleep=self.sleep)

    def group_of(self, instance_id: str) -> str:
        log.debug(f"Looking up the value of the tag '{self.group_tag}' of the instance")
        values = self._remote(lambda: self.store.tag_values(instance_id, self.group_tag), "describe group tag")
        if not values:
            raise GroupTagMissing(f"Instance '{instance_id}' has no '{self.group_tag}' tag")
        if len(values) > 1:
            raise GroupTagAmbiguous(
                f"Unexpected amount of tags retrieved: '{len(values)}', expected 1 ('{self.group_tag}')"
            )
        log.debug(f"Found instance-group value: '{values[0]}'")
        return values[0]

    def used_ids(self, group: str) -> Tuple[int, ...]:
        log.debug("Looking up instances that belong to the same group")
        peers = self._remote(lambda: self.store.list_resources_by_tag(self.group_tag, group), "list group")
        used = []
        for peer_id, tags in peers.items():
            raw = tags.get(self.sequential_id_tag)
            if raw is None:
                continue
            if not _ID_RE.fullmatch(raw) or int(raw) < 1:
                raise InvalidSequentialTagValue(
                    f"Instance '{peer_id}' has an invalid '{self.sequential_id_tag}' tag: '{raw}', expected a positive integer"
                )
            v = int(raw)
            log.debug(f"Found instance '{peer_id}' with tag '{self.sequential_id_tag}' and sequential id '{v}'")
            used.append(v)
        return tuple(sorted(set(used)))

    def allocate(self, instance_id: str) -> int:
        return lowest_free_id(self.used_ids(self.group_of(instance_id)))


def sequential_hostname(base: str, instance_id: str, separator: str, allocator: Allocator) -> Tuple[str, int]:
    log.info("Computing a hostname with sequential naming")

    existing = sequential_suffix(base)
    if existing is not None:
        log.info(
            f"Current input tag value already matches '.*-\\d+$', keeping '{base}' as hostname, "
            f"'{existing}' as sequentialID"
        )
        return base, existing

    sequential_id = allocator.allocate(instance_id)
    hostname = base + separator + str(sequential_id)
    log.info(f"Computed unique hostname: '{hostname}' - Sequential ID: '{sequential_id}'")
    return hostname, sequential_id
