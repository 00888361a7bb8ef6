"""
Instance identity: who am I, and where.

The instance metadata service is a link-local HTTP endpoint answering small
text documents; it is read with urllib.
"""

from __future__ import annotations

import re
import time
import urllib.error
import urllib.request
from typing import Callable, Optional

import structlog

from .core import Backoff, retry_call
from .errors import InvalidAvailabilityZone, InvalidRegion, MetadataUnavailable

log = structlog.get_logger(__name__)

DEFAULT_ENDPOINT = "http://169.254.169.254"
TOKEN_TTL_SECONDS = 300

_AZ_RE = re.compile(r"[a-z]{2}-[a-z]+-\d[a-z]\Z")
_REGION_RE = re.compile(r"[a-z]{2}-[a-z]+-\d")


class MetadataClient:
    """Minimal IMDS client (IMDSv2 token when offered, IMDSv1 otherwise)."""

    def __init__(
        self,
        endpoint: str = DEFAULT_ENDPOINT,
        timeout: float = 2.0,
        urlopen: Callable = urllib.request.urlopen,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout
        self._urlopen = urlopen
        self._token: Optional[str] = None
        self._token_checked = False

    def _session_token(self) -> Optional[str]:
        if self._token_checked:
            return self._token
        req = urllib.request.Request(
            f"{self.endpoint}/latest/api/token",
            method="PUT",
            headers={"X-aws-ec2-metadata-token-ttl-seconds": str(TOKEN_TTL_SECONDS)},
        )
        try:
            with self._urlopen(req, timeout=self.timeout) as resp:
                self._token = resp.read().decode("utf-8").strip() or None
        except urllib.error.HTTPError as e:
            # IMDSv1-only endpoints answer the token call with 403/404/405
            log.debug("metadata token refused, using IMDSv1", status=e.code)
            self._token = None
        except (urllib.error.URLError, OSError) as e:
            raise MetadataUnavailable(f"Unable to reach the metadata service at {self.endpoint}: {e}") from e
        self._token_checked = True
        return self._token

    def get(self, path: str) -> str:
        token = self._session_token()
        headers = {"X-aws-ec2-metadata-token": token} if token else {}
        req = urllib.request.Request(f"{self.endpoint}/latest/meta-data/{path}", method="GET", headers=headers)
        try:
            with self._urlopen(req, timeout=self.timeout) as resp:
                return resp.read().decode("utf-8").strip()
        except (urllib.error.URLError, OSError) as e:
            raise MetadataUnavailable(f"Unable to fetch '{path}' from the metadata service: {e}") from e

    def available(self) -> bool:
        try:
            self.get("instance-id")
        except MetadataUnavailable:
            return False
        return True


class IdentityResolver:
    def __init__(self, client: MetadataClient, backoff: Backoff, sleep: Callable[[float], None] = time.sleep):
        self.client = client
        self.backoff = backoff
        self.sleep = sleep

    def ensure_available(self) -> None:
        log.debug("Probing the metadata service")
        if not self.client.available():
            raise MetadataUnavailable(
                "Unable to access the metadata service, are you running this from an AWS EC2 instance?"
            )

    def _fetch(self, path: str) -> str:
        return retry_call(
            lambda: self.client.get(path),
            backoff=self.backoff,
            retry_on=(MetadataUnavailable,),
            describe=f"metadata {path}",
            sleep=self.sleep,
        )

    def resolve_availability_zone(self) -> str:
        log.debug("Fetching current AZ from the metadata service")
        az = self._fetch("placement/availability-zone")
        log.info(f"Found AZ: '{az}'")
        return az

    def resolve_instance_id(self) -> str:
        log.debug("Fetching current instance-id from the metadata service")
        iid = self._fetch("instance-id")
        log.info(f"Found instance-id: '{iid}'")
        return iid


def compute_region(az: str) -> str:
    """'eu-west-1a' -> 'eu-west-1'"""
    if not _AZ_RE.search(az or ""):
        raise InvalidAvailabilityZone(f"Cannot compute region from invalid availability-zone '{az}'")
    region = az[:-1]
    log.info(f"Computed region: '{region}'")
    return region


def validate_region(region: str) -> str:
    if not _REGION_RE.search(region or ""):
        raise InvalidRegion(f"Cannot start AWS EC2 client session with invalid region '{region}'")
    return region
