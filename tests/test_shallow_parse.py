import json

import pytest

from fhir_package_installer.domain.errors import StructuralScanError
from fhir_package_installer.domain.shallow_parse import shallow_parse


def test_keeps_top_level_scalars_and_drops_containers():
    text = json.dumps(
        {
            "resourceType": "StructureDefinition",
            "id": "us-core-patient",
            "abstract": False,
            "experimental": True,
            "publisher": None,
            "count": 12,
            "contact": [{"name": "HL7"}],
            "differential": {"element": [{"id": "Patient"}]},
            "status": "active",
        }
    )
    assert shallow_parse(text) == {
        "resourceType": "StructureDefinition",
        "id": "us-core-patient",
        "abstract": False,
        "experimental": True,
        "publisher": None,
        "count": 12,
        "status": "active",
    }


def test_unescapes_strings():
    text = r'{"description": "Say \"hi\"\nthen élève \\ done", "key": "v"}'
    assert shallow_parse(text) == {
        "description": 'Say "hi"\nthen élève \\ done',
        "key": "v",
    }


def test_brackets_inside_strings_do_not_confuse_skipping():
    text = (
        '{"extension": [{"valueString": "]}} tricky [{ \\" ]"}, {"nested": {"a": "}"}}],'
        ' "url": "http://example.org/a"}'
    )
    assert shallow_parse(text) == {"url": "http://example.org/a"}


def test_numbers():
    text = '{"a": 1, "b": -2, "c": 3.5, "d": 1e3, "e": -0.25E-2}'
    assert shallow_parse(text) == {"a": 1, "b": -2, "c": 3.5, "d": 1000.0, "e": -0.0025}


def test_empty_object_and_whitespace():
    assert shallow_parse("  {}  ") == {}
    assert shallow_parse('\n{\n  "id" :\t"x" ,\n  "n" : null\n}\n') == {"id": "x", "n": None}


def test_matches_full_parse_for_scalars():
    resource = {
        "resourceType": "ValueSet",
        "id": "colors",
        "url": "http://example.org/ValueSet/colors",
        "version": "4.0.1",
        "immutable": True,
        "date": "2019-11-01T09:29:23+11:00",
        "compose": {"include": [{"system": "http://example.org", "concept": [{"code": "red"}]}]},
        "expansion": {"contains": [{"code": "red"}, {"code": "blue"}]},
    }
    expected = {k: v for k, v in resource.items() if not isinstance(v, (dict, list))}
    assert shallow_parse(json.dumps(resource, indent=2)) == expected


@pytest.mark.parametrize("text", ["[1, 2]", '"just a string"', '{"a": 1', "", "   "])
def test_rejects_non_objects(text):
    with pytest.raises(StructuralScanError):
        shallow_parse(text)


def test_rejects_key_without_colon():
    with pytest.raises(StructuralScanError, match="Expected ':'"):
        shallow_parse('{"a" "b"}')


def test_rejects_unquoted_key():
    with pytest.raises(StructuralScanError, match="Expected key string"):
        shallow_parse("{a: 1}")


def test_scan_error_is_a_value_error():
    with pytest.raises(ValueError):
        shallow_parse("not json")


def test_rejects_non_string_input():
    with pytest.raises(TypeError):
        shallow_parse(b'{"a": 1}')
