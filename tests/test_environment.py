import pytest

from interpreter import Environment, IndyRuntimeError, evaluate_condition


def test_get_missing_is_empty():
    assert Environment().get("nope") == ""


def test_set_overwrites():
    env = Environment()
    env.set("A", "1")
    env.set("A", "2")
    assert env.get("A") == "2"
    assert env.has("A")


@pytest.mark.parametrize("name", ["two words", "tab\there", ""])
def test_set_rejects_bad_names(name):
    env = Environment()
    with pytest.raises(IndyRuntimeError):
        env.set(name, "x")
    assert env.values == {}


def test_interpolation_substitutes_and_blanks_unknown():
    env = Environment()
    env.set("X", "a")
    assert env.interpolate("{X}{Y}") == "a"
    assert env.interpolate("[{X}] { X } {}") == "[a] { X } {}"


def test_interpolation_is_single_pass():
    env = Environment()
    env.set("A", "{B}")
    env.set("B", "x")
    assert env.interpolate("{A}") == "{B}"
    assert env.interpolate("{B}{A}") == "x{B}"


def test_snapshot_truncates_long_values():
    env = Environment()
    env.set("LONG", "z" * 100)
    assert env.snapshot()["LONG"] == "z" * 77 + "..."


def _env(**values):
    env = Environment()
    for name, value in values.items():
        env.set(name, value)
    return env


def test_condition_unset_left_is_empty_string():
    assert evaluate_condition('A == ""', _env()) is True
    assert evaluate_condition('A == "1"', _env()) is False


def test_condition_right_side_prefers_defined_variable():
    env = _env(A="x", B="x")
    assert evaluate_condition("A == B", env) is True
    assert evaluate_condition("A != B", env) is False
    # Undefined right operand is a literal.
    assert evaluate_condition("A == C", env) is False
    assert evaluate_condition("A == x", env) is True


def test_condition_left_side_is_never_a_literal():
    assert evaluate_condition('"x" == "x"', _env()) is False


def test_condition_equality_checked_before_inequality():
    # Splits on '==' first, leaving '!' in the left operand name.
    env = _env(**{"A!": "b"})
    assert evaluate_condition("A! == b", env) is True


def test_condition_without_operator_is_an_error():
    with pytest.raises(IndyRuntimeError, match="Invalid condition format"):
        evaluate_condition("A = 1", _env())
