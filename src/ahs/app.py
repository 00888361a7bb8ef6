"""
One run of the tool: resolve identity, fetch the base tag, compute the
hostname with the selected strategy, then apply it.

Every read happens before the first write. The local hostname is applied
before the tags are written; a failure in between is not rolled back.
"""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

import boto3
import structlog

from .core import Backoff, BackoffConfig, retry_call
from .errors import CommandNotImplemented, RemoteCallError, TagNotFound
from .hostname import GapFillingAllocator, instance_id_hostname, sequential_hostname
from .identity import IdentityResolver, MetadataClient, compute_region, validate_region
from .system import LocalHost, ensure_root
from .tags import EC2TagStore, TagStore

log = structlog.get_logger(__name__)

INSTANCE_ID = "instance-id"
SEQUENTIAL = "sequential"


@dataclass(frozen=True)
class Settings:
    dry_run: bool = False
    input_tag: str = "Name"
    output_tag: str = "Name"
    separator: str = "-"
    persist_hostname: bool = False
    persist_hosts: bool = False
    backoff: BackoffConfig = field(default_factory=BackoffConfig)


@dataclass(frozen=True)
class InstanceIdOptions:
    length: int = 5


@dataclass(frozen=True)
class SequentialOptions:
    group_tag: str = "ahs:instance-group"
    sequential_id_tag: str = "ahs:instance-id"
    respect_azs: bool = False


@dataclass
class Values:
    az: str = ""
    region: str = ""
    instance_id: str = ""
    base: str = ""
    hostname: str = ""
    sequential_id: int = -1


def ec2_tag_store(region: str) -> TagStore:
    log.debug("Starting AWS EC2 client session", region=region)
    return EC2TagStore(boto3.client("ec2", region_name=region))


@dataclass
class Collaborators:
    """Everything run() talks to outside the process."""
    metadata: MetadataClient = field(default_factory=MetadataClient)
    store_factory: Callable[[str], TagStore] = ec2_tag_store
    host: LocalHost = field(default_factory=LocalHost)
    sleep: Callable[[float], None] = time.sleep
    geteuid: Callable[[], int] = os.geteuid


def run(
    command: str,
    settings: Settings,
    options: Union[InstanceIdOptions, SequentialOptions],
    *,
    started: float,
    collaborators: Optional[Collaborators] = None,
) -> Values:
    c = collaborators or Collaborators()
    try:
        return _run(command, settings, options, c)
    finally:
        log.debug(f"Executed in {time.monotonic() - started:.3f}s, exiting..")


def _run(
    command: str,
    settings: Settings,
    options: Union[InstanceIdOptions, SequentialOptions],
    c: Collaborators,
) -> Values:
    if command not in (INSTANCE_ID, SEQUENTIAL):
        raise CommandNotImplemented(command)

    ensure_root(c.geteuid)

    backoff = Backoff(settings.backoff)
    v = Values()

    identity = IdentityResolver(c.metadata, backoff, sleep=c.sleep)
    identity.ensure_available()

    v.az = identity.resolve_availability_zone()
    v.region = validate_region(compute_region(v.az))
    store = c.store_factory(v.region)
    v.instance_id = identity.resolve_instance_id()

    # Tags may not be visible yet right after launch, so a missing input tag is retried too.
    v.base = retry_call(
        lambda: store.read_tag(v.instance_id, settings.input_tag),
        backoff=backoff,
        retry_on=(RemoteCallError, TagNotFound),
        describe=f"read input-tag '{settings.input_tag}'",
        sleep=c.sleep,
    )

    if command == INSTANCE_ID:
        if not isinstance(options, InstanceIdOptions):
            raise TypeError(f"{command} expects InstanceIdOptions, got {type(options).__name__}")
        v.hostname = instance_id_hostname(v.base, v.instance_id, settings.separator, options.length)
    else:
        if not isinstance(options, SequentialOptions):
            raise TypeError(f"{command} expects SequentialOptions, got {type(options).__name__}")
        if options.respect_azs:
            log.warning("--respect-azs is not implemented yet, allocating across the whole group")
        allocator = GapFillingAllocator(
            store, options.group_tag, options.sequential_id_tag, backoff, sleep=c.sleep
        )
        v.hostname, v.sequential_id = sequential_hostname(v.base, v.instance_id, settings.separator, allocator)

    if settings.dry_run:
        _report_dry_run(command, settings, options, v)
    else:
        _apply(command, settings, options, v, store, c, backoff)
    return v


def _report_dry_run(command, settings: Settings, options, v: Values) -> None:
    log.info("Setting instance hostname locally (dry-run)", hostname=v.hostname)
    if settings.persist_hostname:
        log.info("Persisting hostname to /etc/hostname (dry-run)")
    if settings.persist_hosts:
        log.info("Assigning hostname to 127.0.0.1 in /etc/hosts (dry-run)")
    log.info(f"Setting hostname on configured instance output tag '{settings.output_tag}' (dry-run)")
    if command == SEQUENTIAL:
        log.info(
            f"Setting instance sequential id ({v.sequential_id}) on configured tag "
            f"'{options.sequential_id_tag}' (dry-run)"
        )


def _apply(command, settings: Settings, options, v: Values, store: TagStore, c: Collaborators, backoff: Backoff) -> None:
    log.info("Setting instance hostname locally", hostname=v.hostname)
    c.host.set_hostname(v.hostname)
    if settings.persist_hostname:
        c.host.persist_hostname(v.hostname)
    if settings.persist_hosts:
        c.host.persist_hosts(v.hostname)

    log.info(f"Setting hostname on configured instance output tag '{settings.output_tag}'")
    retry_call(
        lambda: store.write_tag(v.instance_id, settings.output_tag, v.hostname),
        backoff=backoff,
        retry_on=(RemoteCallError,),
        describe=f"write output-tag '{settings.output_tag}'",
        sleep=c.sleep,
    )

    if command == SEQUENTIAL:
        log.info(
            f"Setting instance sequential id ({v.sequential_id}) on configured tag '{options.sequential_id_tag}'"
        )
        retry_call(
            lambda: store.write_tag(v.instance_id, options.sequential_id_tag, str(v.sequential_id)),
            backoff=backoff,
            retry_on=(RemoteCallError,),
            describe=f"write sequential-id-tag '{options.sequential_id_tag}'",
            sleep=c.sleep,
        )
