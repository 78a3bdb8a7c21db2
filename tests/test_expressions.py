import math
import pytest
from g4editor.expression_evaluator import ExpressionEvaluator

def test_basic_math():
    evaluator = ExpressionEvaluator()
    success, result = evaluator.evaluate("2 + 2")
    assert success
    assert result == 4

def test_math_functions():
    evaluator = ExpressionEvaluator()
    success, result = evaluator.evaluate("sin(pi/2)")
    assert success
    assert abs(result - 1.0) < 1e-9

def test_numbers_pass_through():
    evaluator = ExpressionEvaluator()
    assert evaluator.evaluate(12.5) == (True, 12.5)
    assert evaluator.evaluate_number(3) == (True, 3.0)

def test_custom_symbols():
    evaluator = ExpressionEvaluator()
    evaluator.add_symbol("radius", 50)
    success, result = evaluator.evaluate("radius * 2")
    assert success
    assert result == 100

def test_call_symbols_do_not_leak():
    evaluator = ExpressionEvaluator()
    success, result = evaluator.evaluate("offset + 1", {"offset": 9})
    assert success and result == 10
    success, _ = evaluator.evaluate("offset")
    assert not success

def test_units_are_not_symbols():
    evaluator = ExpressionEvaluator()
    success, _ = evaluator.evaluate("10*cm")
    assert not success

def test_error_handling():
    evaluator = ExpressionEvaluator()
    success, result = evaluator.evaluate("undefined_variable")
    assert not success
    assert isinstance(result, str)

@pytest.mark.parametrize("bad", ["", None, True, "1/0", "'text'", "sqrt(-1)"])
def test_evaluate_number_rejects_non_numbers(bad):
    evaluator = ExpressionEvaluator()
    success, _ = evaluator.evaluate_number(bad)
    assert not success

def test_evaluate_number_accepts_angle_expression():
    evaluator = ExpressionEvaluator()
    success, value = evaluator.evaluate_number("-pi/4")
    assert success
    assert value == pytest.approx(-math.pi / 4)
