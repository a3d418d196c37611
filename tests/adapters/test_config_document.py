from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from converge.adapters.config_document import load_document, parse_document
from converge.domain.errors import ParseError
from converge.domain.model import ReplacePolicy
from converge.domain.reconciliation import build

if TYPE_CHECKING:
    from pathlib import Path

YAML_DOCUMENT = """
types:
  network:
    replace_on: [cidr]
    replace_policy: destroy_before_create
    timeout_seconds: 120
resources:
  - type: network
    name: main
    attributes:
      cidr: 10.0.0.0/16
  - type: subnet
    name: a
    provider: cloud
    depends_on: [network.main]
    attributes:
      network_id: ${network.main.id}
      tags: [web, "${network.main.cidr}"]
"""


def test_yaml_document_loads_resources_and_types(tmp_path: Path) -> None:
    path = tmp_path / "stack.yaml"
    path.write_text(YAML_DOCUMENT, encoding="utf-8")

    document = load_document(path)

    network, subnet = document.resources
    assert (network.type, network.name) == ("network", "main")
    assert network.location == f"{path}:resources[0]"
    assert subnet.provider == "cloud"
    assert subnet.depends_on == ("network.main",)
    assert subnet.attributes["network_id"] == "${network.main.id}"
    schema = document.registry().schema_for("network")
    assert schema.replace_on == frozenset({"cidr"})
    assert schema.replace_policy is ReplacePolicy.DESTROY_BEFORE_CREATE
    assert schema.timeout_seconds == 120
    assert len(build(document)) == 2


def test_json_and_toml_documents(tmp_path: Path) -> None:
    json_path = tmp_path / "stack.json"
    json_path.write_text(
        json.dumps({"resources": [{"type": "bucket", "name": "logs"}]}), encoding="utf-8"
    )
    toml_path = tmp_path / "stack.toml"
    toml_path.write_text(
        '[[resources]]\ntype = "bucket"\nname = "logs"\n\n'
        '[resources.attributes]\nversioning = true\n',
        encoding="utf-8",
    )

    from_json = load_document(json_path)
    from_toml = load_document(toml_path)

    assert from_json.resources[0].name == "logs"
    assert from_toml.resources[0].attributes == {"versioning": True}


def test_empty_yaml_is_an_empty_document(tmp_path: Path) -> None:
    path = tmp_path / "empty.yml"
    path.write_text("", encoding="utf-8")

    assert load_document(path).resources == ()


def test_unknown_keys_are_rejected() -> None:
    with pytest.raises(ParseError) as excinfo:
        parse_document(
            {"resources": [{"type": "vm", "name": "web", "atributes": {}}]},
            source="stack.yaml",
        )

    assert excinfo.value.location is not None
    assert excinfo.value.location.startswith("stack.yaml:resources.0")


def test_missing_required_field_is_rejected() -> None:
    with pytest.raises(ParseError):
        parse_document({"resources": [{"type": "vm"}]})


def test_invalid_replace_policy_is_rejected() -> None:
    with pytest.raises(ParseError):
        parse_document({"types": {"vm": {"replace_policy": "sometimes"}}})


@pytest.mark.parametrize(
    ("name", "content"),
    [
        ("stack.yaml", "resources: [unclosed"),
        ("stack.json", "{"),
        ("stack.toml", "resources = ["),
        ("stack.yaml", "- just\n- a list\n"),
        ("stack.ini", "[resources]"),
    ],
)
def test_undecodable_files_raise_parse_error(tmp_path: Path, name: str, content: str) -> None:
    path = tmp_path / name
    path.write_text(content, encoding="utf-8")

    with pytest.raises(ParseError) as excinfo:
        load_document(path)

    assert excinfo.value.location == str(path)


def test_missing_file_raises_parse_error(tmp_path: Path) -> None:
    with pytest.raises(ParseError, match="Cannot read"):
        load_document(tmp_path / "missing.yaml")
