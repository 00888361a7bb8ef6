# tests/_helpers.py
from __future__ import annotations

import io
import urllib.error

DOCS = {
    "placement/availability-zone": "eu-west-1a",
    "instance-id": "i-0123456789abcdef0",
}


class FakeIMDS:
    """Stands in for urllib.request.urlopen against 169.254.169.254."""

    def __init__(self, docs=DOCS, token="tok", down=False, failures=0):
        self.docs = docs
        self.token = token
        self.down = down
        self.failures = failures
        self.requests = []

    def __call__(self, req, timeout=None):
        self.requests.append(req)
        if self.down:
            raise urllib.error.URLError("connection refused")
        url = req.full_url
        if url.endswith("/latest/api/token"):
            if self.token is None:
                raise urllib.error.HTTPError(url, 405, "Method Not Allowed", {}, None)
            return io.BytesIO(self.token.encode())
        if self.failures:
            self.failures -= 1
            raise urllib.error.URLError("timed out")
        path = url.split("/latest/meta-data/", 1)[1]
        return io.BytesIO(self.docs[path].encode())


class RecordingHost:
    def __init__(self):
        self.applied = []
        self.persisted = []

    def set_hostname(self, hostname):
        self.applied.append(hostname)

    def persist_hostname(self, hostname):
        self.persisted.append(("hostname", hostname))

    def persist_hosts(self, hostname):
        self.persisted.append(("hosts", hostname))
