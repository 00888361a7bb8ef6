import json
import time

import pytest

from ahs import MemoryTagStore
from ahs.app import Collaborators, InstanceIdOptions, SequentialOptions, Settings, run
from ahs.cli import build_parser, main
from ahs.errors import CommandNotImplemented, RemoteCallError, TagNotFound
from ahs.identity import MetadataClient
from ahs.system import LocalHost

from _helpers import FakeIMDS, RecordingHost

IID = "i-0123456789abcdef0"
GROUP = "ahs:instance-group"
SEQ = "ahs:instance-id"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in (
        "AHS_DRY_RUN",
        "AHS_INPUT_TAG",
        "AHS_OUTPUT_TAG",
        "AHS_SEPARATOR",
        "AHS_LOG_LEVEL",
        "AHS_LOG_FORMAT",
        "AHS_PERSIST_HOSTNAME",
        "AHS_PERSIST_HOSTS",
        "AHS_INSTANCE_ID_LENGTH",
        "AHS_INSTANCE_GROUP_TAG",
        "AHS_INSTANCE_SEQUENTIAL_ID_TAG",
        "AHS_RESPECT_AZS",
    ):
        monkeypatch.delenv(key, raising=False)


def _world(tags=None, euid=0):
    store = MemoryTagStore(tags if tags is not None else {IID: {"Name": "web", GROUP: "web"}})
    regions = []

    def factory(region):
        regions.append(region)
        return store

    host = RecordingHost()
    c = Collaborators(
        metadata=MetadataClient(urlopen=FakeIMDS()),
        store_factory=factory,
        host=host,
        sleep=lambda s: None,
        geteuid=lambda: euid,
    )
    return c, store, host, regions


def test_parser_defaults():
    args = build_parser().parse_args(["instance-id"])
    assert args.dry_run is False
    assert args.input_tag == "Name"
    assert args.output_tag == "Name"
    assert args.separator == "-"
    assert args.log_level == "info"
    assert args.log_format == "text"
    assert args.length == 5

    args = build_parser().parse_args(["sequential"])
    assert args.instance_group_tag == GROUP
    assert args.instance_sequential_id_tag == SEQ
    assert args.respect_azs is False


def test_parser_reads_environment(monkeypatch):
    monkeypatch.setenv("AHS_DRY_RUN", "true")
    monkeypatch.setenv("AHS_SEPARATOR", ".")
    monkeypatch.setenv("AHS_INSTANCE_ID_LENGTH", "8")
    args = build_parser().parse_args(["instance-id"])
    assert args.dry_run is True
    assert args.separator == "."
    assert args.length == 8


def test_command_is_required():
    with pytest.raises(SystemExit) as exc:
        build_parser().parse_args([])
    assert exc.value.code == 2


def test_instance_id_run_applies_hostname_and_output_tag():
    c, store, host, regions = _world()
    assert main(["instance-id"], collaborators=c) == 0

    assert regions == ["eu-west-1"]
    assert host.applied == ["web-01234"]
    assert store.writes == [(IID, "Name", "web-01234")]


def test_sequential_run_writes_hostname_then_sequential_id():
    c, store, host, _ = _world(
        {
            IID: {"Name": "web", GROUP: "web"},
            "i-a": {GROUP: "web", SEQ: "1"},
            "i-b": {GROUP: "web", SEQ: "3"},
        }
    )
    assert main(["--output-tag", "Hostname", "sequential"], collaborators=c) == 0

    assert host.applied == ["web-2"]
    assert store.writes == [(IID, "Hostname", "web-2"), (IID, SEQ, "2")]


def test_dry_run_changes_nothing():
    c, store, host, _ = _world()
    assert main(["--dry-run", "sequential"], collaborators=c) == 0
    assert host.applied == []
    assert store.writes == []


def test_persist_flags_reach_the_host():
    c, _, host, _ = _world()
    assert main(["--persist-hostname", "--persist-hosts", "instance-id"], collaborators=c) == 0
    assert host.persisted == [("hostname", "web-01234"), ("hosts", "web-01234")]


def test_requires_root(capsys):
    c, store, host, _ = _world(euid=1000)
    assert main(["instance-id"], collaborators=c) == 1
    assert "as root" in capsys.readouterr().err
    assert host.applied == [] and store.writes == []


def test_data_errors_exit_non_zero_with_one_line(capsys):
    c, store, _, _ = _world({IID: {"Name": "web"}})
    assert main(["--log-format", "json", "sequential"], collaborators=c) == 1

    lines = [json.loads(line) for line in capsys.readouterr().err.splitlines()]
    errors = [line for line in lines if line["level"] == "error"]
    assert len(errors) == 1
    assert GROUP in errors[0]["event"]
    assert store.writes == []


def test_suffix_length_error_exits_non_zero():
    c, store, _, _ = _world()
    assert main(["instance-id", "--length", "40"], collaborators=c) == 1
    assert store.writes == []


def test_invalid_log_level(capsys):
    c, _, _, _ = _world()
    assert main(["--log-level", "chatty", "instance-id"], collaborators=c) == 1
    assert "Invalid log level" in capsys.readouterr().err


def test_input_tag_is_retried_until_visible():
    class Lagging(MemoryTagStore):
        misses = 3

        def read_tag(self, resource_id, key):
            if self.misses:
                self.misses -= 1
                raise TagNotFound(resource_id, key)
            return super().read_tag(resource_id, key)

    c, _, host, _ = _world()
    store = Lagging({IID: {"Name": "api"}})
    slept = []
    c.store_factory = lambda region: store
    c.sleep = slept.append

    assert main(["instance-id"], collaborators=c) == 0
    assert host.applied == ["api-01234"]
    assert slept == [0.1, 0.2, 0.4]


def test_respect_azs_is_accepted():
    c, _, host, _ = _world()
    assert main(["sequential", "--respect-azs"], collaborators=c) == 0
    assert host.applied == ["web-1"]


def test_run_rejects_unknown_command():
    c, _, _, _ = _world()
    with pytest.raises(CommandNotImplemented, match="bogus"):
        run("bogus", Settings(), InstanceIdOptions(), started=time.monotonic(), collaborators=c)


def test_run_returns_computed_values():
    c, _, _, _ = _world()
    v = run("instance-id", Settings(dry_run=True), InstanceIdOptions(length=3), started=time.monotonic(), collaborators=c)
    assert (v.az, v.region, v.instance_id, v.base, v.hostname) == ("eu-west-1a", "eu-west-1", IID, "web", "web-012")
    assert v.sequential_id == -1


def test_rejected_hostname_exits_non_zero_with_one_line(capsys):
    def refuse(name):
        raise OSError(22, "Invalid argument")

    c, store, _, _ = _world()
    c.host = LocalHost(sethostname=refuse)
    assert main(["--log-format", "json", "instance-id"], collaborators=c) == 1

    lines = [json.loads(line) for line in capsys.readouterr().err.splitlines()]
    errors = [line for line in lines if line["level"] == "error"]
    assert len(errors) == 1
    assert "Invalid argument" in errors[0]["event"]
    assert store.writes == []


def test_failed_tag_write_leaves_local_hostname_applied():
    class ReadOnly(MemoryTagStore):
        def write_tag(self, resource_id, key, value):
            raise RemoteCallError("UnauthorizedOperation")

    c, _, host, _ = _world()
    store = ReadOnly({IID: {"Name": "web", GROUP: "web"}})
    slept = []
    c.store_factory = lambda region: store
    c.sleep = slept.append

    assert main(["sequential"], collaborators=c) == 1
    # applied locally, not rolled back, and the sequential id was never attempted
    assert host.applied == ["web-1"]
    assert SEQ not in store.tags[IID]
    assert len(slept) == 11


def test_run_rejects_options_of_the_other_command():
    c, _, _, _ = _world()
    with pytest.raises(TypeError):
        run("instance-id", Settings(), SequentialOptions(), started=time.monotonic(), collaborators=c)
