import pytest

from multicalc.calculator import (
    CalculatorError,
    DivisionByZeroError,
    InvalidArgumentError,
    Task,
)


@pytest.mark.parametrize(
    "arg1, arg2, want1, want2",
    [
        ("1.0", "2.0", 1.0, 2.0),
        ("1.5", "2.67", 1.5, 2.67),
        ("-1", "0", -1.0, 0.0),
        ("1", "1", 1.0, 1.0),
    ],
)
def test_parse_ok(arg1, arg2, want1, want2):
    assert Task(arg1=arg1, arg2=arg2).parse_args() == (want1, want2)


@pytest.mark.parametrize(
    "arg1, arg2, operation, want",
    [
        ("1.0", "2.0", "+", 3.0),
        ("40.0", "20.0", "-", 20.0),
        ("15.0", "2.0", "*", 30.0),
        ("1.5", "2.0", "+", 3.5),
        ("1.53", "0.47", "+", 2.0),
        ("1", "1", "/", 1.0),
    ],
)
def test_calc_ok(arg1, arg2, operation, want):
    task = Task(arg1=arg1, arg2=arg2, operation=operation)
    assert task.calc() == want
    assert task.result == want
    assert not task.error


def test_division_by_zero():
    task = Task(arg1="1", arg2="0", operation="/")
    with pytest.raises(DivisionByZeroError):
        task.calc()
    assert task.error == "Division by zero"


def test_invalid_argument_sets_error():
    task = Task(arg1="abc", arg2="1", operation="+")
    with pytest.raises(InvalidArgumentError):
        task.calc()
    assert task.error == "Invalid arguments"


def test_unknown_operation_is_invalid_argument():
    task = Task(arg1="1", arg2="2", operation="%")
    with pytest.raises(InvalidArgumentError):
        task.calc()
    assert task.error == "Invalid arguments"


@pytest.mark.parametrize("bad", [" 1", "1_0", "1e400", "", "0x10"])
def test_parse_rejects_malformed_numbers(bad):
    with pytest.raises(InvalidArgumentError):
        Task(arg1=bad, arg2="1").parse_args()


def test_errors_share_base_class():
    task = Task(arg1="2", arg2="0", operation="/")
    with pytest.raises(CalculatorError):
        task.calc()
    assert task.result == 0.0