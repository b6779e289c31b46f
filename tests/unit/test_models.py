"""Tests for cluster_cleaner.models: resource identity and ClusterResource parsing."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from cluster_cleaner.models.cluster import (
    APP,
    CLUSTER,
    CONFIG_MAP,
    ApplicationManaged,
    ClusterResource,
    ObjectKey,
    Vintage,
)

from .conftest import NOW, make_cluster


class TestObjectKey:
    def test_str(self) -> None:
        assert str(ObjectKey("org-acme", "test")) == "org-acme/test"

    def test_unpacks_as_namespace_name(self) -> None:
        namespace, name = ObjectKey("ns", "n")
        assert (namespace, name) == ("ns", "n")


class TestResourceKind:
    def test_api_versions(self) -> None:
        assert CLUSTER.api_version == "cluster.x-k8s.io/v1beta1"
        assert APP.api_version == "application.giantswarm.io/v1alpha1"
        assert CONFIG_MAP.api_version == "v1"


class TestProviderVariants:
    def test_variants_with_same_kind_differ(self) -> None:
        assert Vintage("aws") != ApplicationManaged("aws")

    def test_variants_are_hashable(self) -> None:
        assert len({Vintage("aws"), Vintage("aws"), ApplicationManaged("capa")}) == 2


class TestClusterResource:
    def test_from_object(self) -> None:
        raw = make_cluster(labels={"a": "b"}, annotations={"c": "d"})
        cluster = ClusterResource.from_object(raw)

        assert cluster.key == ObjectKey("org-acme", "test")
        assert cluster.created_at == datetime(2026, 3, 10, 7, 0, 0, tzinfo=UTC)
        assert cluster.uid == "uid-test"
        assert cluster.labels == {"a": "b"}
        assert cluster.annotations == {"c": "d"}
        assert cluster.deletion_requested_at is None
        assert cluster.resource_version == "42"

    def test_deletion_timestamp_parsed(self) -> None:
        cluster = ClusterResource.from_object(make_cluster(deleting=True))
        assert cluster.deletion_requested_at == NOW

    def test_missing_labels_become_empty(self) -> None:
        raw = make_cluster()
        raw["metadata"]["labels"] = None
        del raw["metadata"]["annotations"]
        cluster = ClusterResource.from_object(raw)
        assert cluster.labels == {}
        assert cluster.annotations == {}

    def test_datetime_timestamp_accepted(self) -> None:
        raw = make_cluster()
        raw["metadata"]["creationTimestamp"] = datetime(2026, 3, 10, 7, 0, 0)
        assert ClusterResource.from_object(raw).created_at.tzinfo is UTC

    def test_offset_timestamp_normalised_to_utc(self) -> None:
        raw = make_cluster()
        raw["metadata"]["creationTimestamp"] = "2026-03-10T09:00:00+02:00"
        assert ClusterResource.from_object(raw).created_at == datetime(2026, 3, 10, 7, 0, 0, tzinfo=UTC)

    def test_missing_creation_timestamp_raises(self) -> None:
        raw = make_cluster()
        del raw["metadata"]["creationTimestamp"]
        with pytest.raises(ValueError, match="creationTimestamp"):
            ClusterResource.from_object(raw)
