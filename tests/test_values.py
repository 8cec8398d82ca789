import pytest

from site_analytics.core.values import NULL, Value, ValueKind, to_props, values_equal


def test_value_tags_json_types():
    assert Value.of("pro").kind is ValueKind.STRING
    assert Value.of(3).kind is ValueKind.NUMBER
    assert Value.of(2.5).kind is ValueKind.NUMBER
    assert Value.of(True).kind is ValueKind.BOOLEAN
    assert Value.of(None) is NULL


def test_as_string():
    assert Value.of("pro").as_string() == "pro"
    assert Value.of(10).as_string() == "10"
    assert Value.of(10.0).as_string() == "10"
    assert Value.of(False).as_string() == "false"
    assert NULL.as_string() is None


def test_as_float_coerces_numeric_strings_and_rejects_others():
    assert Value.of("19.99").as_float() == 19.99
    assert Value.of(7).as_float() == 7.0
    assert Value.of("abc").as_float() is None
    assert NULL.as_float() is None


@pytest.mark.parametrize("raw,expected", [
    (True, 1), (False, 0), (1, 1), (0, 0), (2, None),
    ("true", 1), ("FALSE", 0), ("1", 1), ("yes", None),
])
def test_as_bool(raw, expected):
    assert Value.of(raw).as_bool() == expected


def test_values_equal_is_directed_by_rule_type():
    props = to_props({"plan": "pro", "seats": "5", "trial": "true", "price": "n/a"})

    assert values_equal(props["plan"], "pro")
    assert not values_equal(props["plan"], "free")
    assert values_equal(props["seats"], 5)
    assert values_equal(props["seats"], 5.0)
    assert values_equal(props["trial"], True)
    assert not values_equal(props["trial"], False)
    assert not values_equal(props["price"], 0)
    assert not values_equal(None, "pro")
