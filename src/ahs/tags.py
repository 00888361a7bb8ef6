"""
Tag store access.

TagStore is the seam the allocation engine reads and writes through.
EC2TagStore backs it with the EC2 API; MemoryTagStore keeps everything in a
dict and is what the scale-out simulation and the tests run against.
"""

from __future__ import annotations

from typing import Any, Dict, List, Protocol

import structlog
from botocore.exceptions import BotoCoreError, ClientError

from .errors import RemoteCallError, TagNotFound

log = structlog.get_logger(__name__)


class TagStore(Protocol):
    def read_tag(self, resource_id: str, key: str) -> str:
        ...

    def tag_values(self, resource_id: str, key: str) -> List[str]:
        ...

    def write_tag(self, resource_id: str, key: str, value: str) -> None:
        ...

    def list_resources_by_tag(self, key: str, value: str) -> Dict[str, Dict[str, str]]:
        ...


def describe_error(err: BaseException) -> str:
    if isinstance(err, ClientError):
        e = err.response.get("Error", {})
        return f"{e.get('Code', 'Unknown')}: {e.get('Message', '')}".rstrip(": ")
    return str(err)


class EC2TagStore:
    def __init__(self, client: Any):
        self.client = client

    def _call(self, op: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            return getattr(self.client, op)(**kwargs)
        except (ClientError, BotoCoreError) as e:
            raise RemoteCallError(describe_error(e)) from e

    def _instances(self, filters: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        try:
            pages = self.client.get_paginator("describe_instances").paginate(Filters=filters)
            return [
                instance
                for page in pages
                for reservation in page.get("Reservations", [])
                for instance in reservation.get("Instances", [])
            ]
        except (ClientError, BotoCoreError) as e:
            raise RemoteCallError(describe_error(e)) from e

    def read_tag(self, resource_id: str, key: str) -> str:
        log.info(f"Querying tag '{key}' from EC2 API", resource=resource_id)
        for instance in self._instances([{"Name": "instance-id", "Values": [resource_id]}]):
            for tag in instance.get("Tags", []):
                if tag["Key"] == key:
                    log.debug(f"Found tag '{key}': '{tag['Value']}'")
                    return tag["Value"]
        raise TagNotFound(resource_id, key)

    def tag_values(self, resource_id: str, key: str) -> List[str]:
        resp = self._call(
            "describe_tags",
            Filters=[
                {"Name": "resource-type", "Values": ["instance"]},
                {"Name": "resource-id", "Values": [resource_id]},
                {"Name": "key", "Values": [key]},
            ],
        )
        return [t["Value"] for t in resp.get("Tags", [])]

    def write_tag(self, resource_id: str, key: str, value: str) -> None:
        self._call("create_tags", Resources=[resource_id], Tags=[{"Key": key, "Value": value}])

    def list_resources_by_tag(self, key: str, value: str) -> Dict[str, Dict[str, str]]:
        found: Dict[str, Dict[str, str]] = {}
        for instance in self._instances([{"Name": f"tag:{key}", "Values": [value]}]):
            found[instance["InstanceId"]] = {t["Key"]: t["Value"] for t in instance.get("Tags", [])}
        return found


class MemoryTagStore:
    """In-process tag store; last write wins, like EC2."""

    def __init__(self, tags: Dict[str, Dict[str, str]] | None = None):
        self.tags: Dict[str, Dict[str, str]] = {rid: dict(t) for rid, t in (tags or {}).items()}
        self.writes: List[tuple[str, str, str]] = []

    def read_tag(self, resource_id: str, key: str) -> str:
        try:
            return self.tags[resource_id][key]
        except KeyError:
            raise TagNotFound(resource_id, key) from None

    def tag_values(self, resource_id: str, key: str) -> List[str]:
        t = self.tags.get(resource_id, {})
        return [t[key]] if key in t else []

    def write_tag(self, resource_id: str, key: str, value: str) -> None:
        self.tags.setdefault(resource_id, {})[key] = value
        self.writes.append((resource_id, key, value))

    def list_resources_by_tag(self, key: str, value: str) -> Dict[str, Dict[str, str]]:
        return {rid: dict(t) for rid, t in self.tags.items() if t.get(key) == value}
