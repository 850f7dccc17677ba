# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Restore Reconciler Tests.
"""

import pytest

from conftest import FakeRuntime, make_inspect
from dockvault.exceptions import IncompleteMetadata, UsageError
from dockvault.metadata import load_metadata
from dockvault.models import CreationSpec, MountPoint, PortBinding, WorkloadMetadata
from dockvault.reconcile import derive_creation_spec, parse_overrides, replace_existing


def _metadata(**kwargs) -> WorkloadMetadata:
    defaults = dict(
        running=True,
        image="postgres:16",
        ports=(PortBinding("5432/tcp", "15432"),),
        env=("POSTGRES_DB=app",),
        command=("postgres", "-c", "fsync=on"),
        mounts=(MountPoint("/srv/pg", "/var/lib/postgresql/data"),),
    )
    defaults.update(kwargs)
    return WorkloadMetadata(**defaults)


def test_derive_creation_spec_from_complete_metadata():
    spec = derive_creation_spec(_metadata(), "db1")

    assert spec.name == "db1"
    assert spec.image == "postgres:16"
    assert spec.env == ["POSTGRES_DB=app"]
    assert spec.command == ["postgres", "-c", "fsync=on"]
    assert spec.ports == [PortBinding("5432/tcp", "15432")]
    assert spec.mount_bindings == {"/var/lib/postgresql/data": ("/srv/pg", "/srv/pg")}


def test_ports_without_host_port_are_dropped():
    metadata = _metadata(
        ports=(
            PortBinding("80/tcp", "8080"),
            PortBinding("443/tcp", None),
            PortBinding("9000/tcp", "not-a-port"),
        )
    )

    spec = derive_creation_spec(metadata, "web1")

    assert [p.container_port for p in spec.ports] == ["80/tcp"]


def test_missing_image_is_incomplete_metadata():
    with pytest.raises(IncompleteMetadata):
        derive_creation_spec(_metadata(image=None), "db1")


def test_snapshot_image_takes_precedence():
    spec = derive_creation_spec(
        _metadata(snapshot_image="dockvault/db1:20260101_000000_000001"), "db1"
    )

    assert spec.image == "dockvault/db1:20260101_000000_000001"


def test_missing_fields_degrade_to_defaults():
    """Only the image is required; everything else defaults to empty."""
    metadata = load_metadata({"image": "redis:7"})

    spec = derive_creation_spec(metadata, "cache")

    assert spec.image == "redis:7"
    assert spec.ports == []
    assert spec.env == []
    assert spec.command == []
    assert spec.mount_bindings == {}


def test_overrides_are_keyed_by_container_path():
    spec = derive_creation_spec(
        _metadata(),
        "db1",
        overrides={"/var/lib/postgresql/data": "/mnt/restore/pg"},
    )

    assert spec.mount_bindings == {"/var/lib/postgresql/data": ("/srv/pg", "/mnt/restore/pg")}


def test_nested_mount_follows_its_parent():
    metadata = _metadata(
        mounts=(
            MountPoint("/host/app", "/srv"),
            MountPoint("/host/app/logs", "/var/log/app"),
        )
    )

    default = derive_creation_spec(metadata, "app")
    moved = derive_creation_spec(metadata, "app", overrides={"/srv": "/mnt/app"})
    split = derive_creation_spec(
        metadata, "app", overrides={"/srv": "/mnt/app", "/var/log/app": "/mnt/logs"}
    )

    assert default.mount_bindings["/var/log/app"] == ("/host/app/logs", "/host/app/logs")
    assert moved.mount_bindings["/var/log/app"] == ("/host/app/logs", "/mnt/app/logs")
    assert split.mount_bindings["/var/log/app"] == ("/host/app/logs", "/mnt/logs")


def test_raw_inspect_blob_restores_like_normalized_form():
    raw = make_inspect(
        image="nginx:1.25",
        mounts=[("/data/web1", "/usr/share/nginx")],
        ports={"80/tcp": "8080"},
        env=["A=1"],
        cmd=["nginx"],
    )

    spec = derive_creation_spec(load_metadata([raw]), "web1")

    assert spec.image == "nginx:1.25"
    assert spec.ports == [PortBinding("80/tcp", "8080", "")]
    assert spec.mount_bindings == {"/usr/share/nginx": ("/data/web1", "/data/web1")}


def test_to_docker_kwargs_is_structured():
    spec = CreationSpec(
        name="web1",
        image="nginx:1.25",
        ports=[
            PortBinding("80/tcp", "8080"),
            PortBinding("80/tcp", "8081", "127.0.0.1"),
            PortBinding("53/udp", "5353"),
        ],
        env=["A=1"],
        command=[],
        mount_bindings={"/usr/share/nginx": ("/data/web1", "/restore/web1")},
    )

    kwargs = spec.to_docker_kwargs()

    assert kwargs["image"] == "nginx:1.25"
    assert kwargs["name"] == "web1"
    assert kwargs["environment"] == ["A=1"]
    assert kwargs["ports"] == {"80/tcp": [8080, ("127.0.0.1", 8081)], "53/udp": 5353}
    assert kwargs["volumes"] == {"/restore/web1": {"bind": "/usr/share/nginx", "mode": "rw"}}
    assert "command" not in kwargs


# ============================================================================
# Overrides
# ============================================================================

def test_parse_overrides():
    overrides = parse_overrides(["/var/lib/mysql=/srv/restore/mysql", "/etc/app/=/srv/etc"])

    assert overrides == {"/var/lib/mysql": "/srv/restore/mysql", "/etc/app": "/srv/etc"}


@pytest.mark.parametrize("value", ["/var/lib/mysql", "relative=/srv", "/ctr=relative", "=/srv"])
def test_parse_overrides_rejects_bad_syntax(value: str):
    with pytest.raises(UsageError):
        parse_overrides([value])


# ============================================================================
# Replacing an existing workload
# ============================================================================

@pytest.mark.asyncio
async def test_replace_existing_stops_and_removes(fake_runtime: FakeRuntime):
    fake_runtime.add("db1", make_inspect(running=True))

    assert await replace_existing(fake_runtime, "db1", 1) is True
    assert "db1" not in fake_runtime.containers
    assert [c[0] for c in fake_runtime.calls] == ["stop", "remove"]


@pytest.mark.asyncio
async def test_replace_existing_is_noop_when_absent(fake_runtime: FakeRuntime):
    assert await replace_existing(fake_runtime, "db1", 1) is False
    assert fake_runtime.calls == []
