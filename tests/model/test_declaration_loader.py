"""Tests for declaration loading."""

import pytest
from converge.model.loader import load_declarations, parse_declarations
from converge.model.models import ResourceAddress
from converge.utils.errors import DeclarationLoadError


class TestLoadDeclarations:
    """Test loading declaration documents."""

    def test_list_layout(self, tmp_path):
        path = tmp_path / "infra.yaml"
        path.write_text(
            "resources:\n"
            "  - kind: aws_vpc\n"
            "    name: main\n"
            "    attributes: {cidr_block: 10.0.0.0/16}\n"
            "  - kind: aws_subnet\n"
            "    name: a\n"
            "    attributes: {vpc_id: '${aws_vpc.main.id}'}\n",
            encoding="utf-8",
        )
        decls = load_declarations(str(path))
        assert [str(d.address) for d in decls] == ["aws_vpc.main", "aws_subnet.a"]
        assert decls[1].dependencies() == [ResourceAddress(kind="aws_vpc", name="main")]

    def test_map_layout_with_depends_on(self):
        decls = parse_declarations({
            "resource": {
                "thing": {
                    "first": {"name": "first"},
                    "second": {"name": "second", "depends_on": ["thing.first"]},
                }
            }
        })
        assert decls[1].depends_on == [ResourceAddress(kind="thing", name="first")]
        assert "depends_on" not in decls[1].attributes

    def test_json_document(self, tmp_path):
        path = tmp_path / "infra.json"
        path.write_text('{"resources": [{"kind": "thing", "name": "x"}]}', encoding="utf-8")
        assert len(load_declarations(str(path))) == 1

    def test_missing_file(self):
        with pytest.raises(DeclarationLoadError, match="not found"):
            load_declarations("does-not-exist.yaml")

    def test_duplicate_address(self):
        with pytest.raises(DeclarationLoadError, match="Duplicate"):
            parse_declarations({"resources": [{"kind": "thing", "name": "x"}, {"kind": "thing", "name": "x"}]})

    def test_unknown_key(self):
        with pytest.raises(DeclarationLoadError, match="unknown keys"):
            parse_declarations({"resources": [{"kind": "thing", "name": "x", "count": 3}]})

    def test_invalid_name(self):
        with pytest.raises(DeclarationLoadError, match="Invalid resource"):
            parse_declarations({"resources": [{"kind": "thing", "name": "has space"}]})

    def test_invalid_depends_on(self):
        with pytest.raises(DeclarationLoadError):
            parse_declarations({"resources": [{"kind": "thing", "name": "x", "depends_on": ["nodot"]}]})

    def test_map_layout_body_must_be_mapping(self):
        with pytest.raises(DeclarationLoadError, match="'resource.thing.a' must be a mapping"):
            parse_declarations({"resource": {"thing": {"a": "str"}}})

    def test_empty_document(self):
        assert parse_declarations(None) == []
