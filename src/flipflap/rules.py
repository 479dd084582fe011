"""コンテキストルールの照合"""

from __future__ import annotations

from collections.abc import Mapping

from .models import ContextRule, EvaluationContext, Operand, Operator, Scalar


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def strict_equals(left: object, right: object) -> bool:
    """型を区別する等価比較。bool は bool とのみ、数値は数値とのみ等しい。"""
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left is right
    if _is_number(left) and _is_number(right):
        return left == right
    if isinstance(left, str) and isinstance(right, str):
        return left == right
    return False


def _compare(value: Scalar, operand: Operand, operator: Operator) -> bool:
    if not (_is_number(value) and _is_number(operand)):
        return False
    match operator:
        case Operator.GT:
            return value > operand  # type: ignore[operator]
        case Operator.GTE:
            return value >= operand  # type: ignore[operator]
        case Operator.LT:
            return value < operand  # type: ignore[operator]
        case Operator.LTE:
            return value <= operand  # type: ignore[operator]
    return False


def _contains(operand: Operand, value: Scalar) -> bool:
    return any(strict_equals(value, item) for item in operand)  # type: ignore[union-attr]


def matches_operator(value: Scalar, operator: Operator, operand: Operand) -> bool:
    """1 つの演算子を評価する。型が合わない場合は不一致。"""
    match operator:
        case Operator.EQ:
            return strict_equals(value, operand)
        case Operator.NEQ:
            return not strict_equals(value, operand)
        case Operator.GT | Operator.GTE | Operator.LT | Operator.LTE:
            return _compare(value, operand, operator)
        case Operator.ONE_OF:
            return isinstance(operand, list) and _contains(operand, value)
        case Operator.NOT_ONE_OF:
            return isinstance(operand, list) and not _contains(operand, value)
    return False


def matches_rule(value: Scalar, rule: ContextRule) -> bool:
    """フィールド値が rule のすべての演算子を満たすか判定する。

    オペランドが 1 つもないルールや未知の演算子は不一致として扱う。
    """
    has_operand = False
    for name, operand in rule.items():
        if operand is None:
            continue
        has_operand = True
        try:
            operator = Operator(name)
        except ValueError:
            return False
        if not matches_operator(value, operator, operand):
            return False
    return has_operand


def matches_context_rules(
    context: EvaluationContext,
    context_rules: Mapping[str, ContextRule] | None,
) -> bool:
    """すべてのフィールドが存在し、すべてのルールを満たすか判定する (AND 条件)。"""
    if not context_rules:
        return True
    for field_name, rule in context_rules.items():
        value = context.get(field_name)
        if value is None:
            return False
        if not isinstance(rule, Mapping) or not matches_rule(value, rule):
            return False
    return True
