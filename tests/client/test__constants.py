import pytest

from opcua_mcp.client import (
    DATA_TYPES,
    DEFAULT_DATA_TYPE,
    coerce_value,
    is_good_quality,
    resolve_data_type,
    resolve_node_id,
)


def test_resolve_node_id_well_known_tokens():
    assert resolve_node_id("RootFolder") == "i=84"
    assert resolve_node_id("ObjectsFolder") == "i=85"
    assert resolve_node_id(" Server ") == "i=2253"


def test_resolve_node_id_passthrough():
    assert resolve_node_id('ns=3;s="Motor"."Speed"') == 'ns=3;s="Motor"."Speed"'


@pytest.mark.parametrize(
    "hint,expected",
    [
        ("Int32", "Int32"),
        ("int32", "Int32"),
        ("  BOOLEAN ", "Boolean"),
        ("uint64", "UInt64"),
        ("string", "String"),
        (None, "Double"),
        ("", "Double"),
    ],
)
def test_resolve_data_type(hint, expected):
    assert resolve_data_type(hint) == expected


def test_resolve_unknown_data_type_falls_back_with_warning(caplog):
    caplog.set_level("WARNING")
    assert resolve_data_type("Decimal128") == DEFAULT_DATA_TYPE
    assert "Unknown data type 'Decimal128'" in caplog.text


def test_data_type_table():
    assert DEFAULT_DATA_TYPE == "Double"
    assert len(DATA_TYPES) == 12
    assert "DateTime" not in DATA_TYPES


@pytest.mark.parametrize(
    "value,expected",
    [
        (True, True),
        ("true", True),
        ("ON", True),
        ("1", True),
        ("false", False),
        ("off", False),
        (0, False),
        (2.5, True),
    ],
)
def test_coerce_boolean(value, expected):
    assert coerce_value(value, "Boolean") is expected


def test_coerce_boolean_rejects_garbage():
    with pytest.raises(ValueError):
        coerce_value("maybe", "Boolean")
    with pytest.raises(ValueError):
        coerce_value(None, "Boolean")


@pytest.mark.parametrize("data_type", ["SByte", "Int16", "UInt32", "Int64"])
def test_coerce_integers(data_type):
    assert coerce_value("42", data_type) == 42
    assert coerce_value(7.0, data_type) == 7
    assert coerce_value(True, data_type) == 1


def test_coerce_integer_rejects_fraction():
    with pytest.raises(ValueError, match="losing precision"):
        coerce_value(1.5, "Int32")
    with pytest.raises(ValueError):
        coerce_value("1.5", "Int32")


def test_coerce_floats_and_strings():
    assert coerce_value("12.5", "Double") == 12.5
    assert coerce_value(3, "Float") == 3.0
    assert isinstance(coerce_value(3, "Float"), float)
    assert coerce_value(12, "String") == "12"
    assert coerce_value("abc", "String") == "abc"


def test_coerce_float_rejects_text():
    with pytest.raises(ValueError):
        coerce_value("fast", "Double")


def test_coerce_unsupported_type():
    with pytest.raises(ValueError, match="Unsupported data type"):
        coerce_value(1, "DateTime")


def test_is_good_quality():
    assert is_good_quality("Good")
    assert is_good_quality("GoodClamped")
    assert not is_good_quality("Uncertain")
    assert not is_good_quality("BadNodeIdUnknown")
