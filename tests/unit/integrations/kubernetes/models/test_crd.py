"""Unit tests for CRD models."""

from __future__ import annotations

import pytest

from release_operations_manager.integrations.kubernetes.models.crd import (
    SchemaDefinition,
    SchemaEncoding,
    parse_crd_documents,
)


def v1_body(*versions: dict) -> dict:
    return {
        "apiVersion": "apiextensions.k8s.io/v1",
        "kind": "CustomResourceDefinition",
        "metadata": {"name": "widgets.example.com", "resourceVersion": "7"},
        "spec": {"group": "example.com", "versions": list(versions)},
    }


@pytest.mark.unit
@pytest.mark.kubernetes
class TestSchemaDefinition:
    """Tests for decoding CRD bodies."""

    def test_encoding_lookup(self) -> None:
        assert SchemaEncoding.from_api_version("apiextensions.k8s.io/v1") is SchemaEncoding.V1
        assert SchemaEncoding.from_api_version("apiextensions.k8s.io/v2") is None

    def test_decode_v1(self) -> None:
        definition = SchemaDefinition.decode(
            v1_body(
                {"name": "v1", "served": True, "storage": False},
                {"name": "v2", "served": True, "storage": True},
            ),
            SchemaEncoding.V1,
        )

        assert definition.name == "widgets.example.com"
        assert definition.resource_version == "7"
        assert definition.storage_versions == ["v2"]

    def test_version_order_matters(self) -> None:
        first = {"name": "v1", "served": True, "storage": True}
        second = {"name": "v2", "served": True, "storage": False}

        forward = SchemaDefinition.decode(v1_body(first, second), SchemaEncoding.V1)
        backward = SchemaDefinition.decode(v1_body(second, first), SchemaEncoding.V1)

        assert forward.same_versions_as(SchemaDefinition.decode(v1_body(first, second), SchemaEncoding.V1))
        assert not forward.same_versions_as(backward)

    def test_with_resource_version_copies_body(self) -> None:
        definition = SchemaDefinition.decode(v1_body(), SchemaEncoding.V1)

        body = definition.with_resource_version("42")
        stripped = definition.with_resource_version(None)

        assert body["metadata"]["resourceVersion"] == "42"
        assert "resourceVersion" not in stripped["metadata"]
        assert definition.body["metadata"]["resourceVersion"] == "7"


@pytest.mark.unit
@pytest.mark.kubernetes
class TestParseCrdDocuments:
    """Tests for parse_crd_documents."""

    def test_skips_empty_documents(self) -> None:
        text = "---\n---\napiVersion: apiextensions.k8s.io/v1beta1\nmetadata:\n  name: a.example.com\n"

        documents = parse_crd_documents(text, source="web/crds/a.yaml")

        assert [(d.name, d.api_version) for d in documents] == [("a.example.com", "apiextensions.k8s.io/v1beta1")]

    @pytest.mark.parametrize(("text", "message"), [("key: [unclosed", "Failed to parse"), ("- a\n", "non-mapping")])
    def test_invalid(self, text: str, message: str) -> None:
        with pytest.raises(ValueError, match=message):
            parse_crd_documents(text, source="web/crds/bad.yaml")
