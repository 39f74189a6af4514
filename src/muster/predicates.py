"""Conditional predicates for Muster.

Actions and rules may carry a boolean expression such as
``"target.hp_pct < 40 and not in_combat"``. Evaluation always fails closed:
an expression that cannot be parsed or raises evaluates to False and the
agent carries on.
"""

import ast
import operator
from typing import Any, Callable, Protocol

from .utils.logging import get_logger

logger = get_logger("predicates")


class PredicateEvaluator(Protocol):
    """Evaluates an expression against caller supplied context."""

    def evaluate(self, expression: str, context: dict[str, Any]) -> bool: ...


_BINARY_OPS: dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

_COMPARE_OPS: dict[type, Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}


class SafeExpressionEvaluator:
    """Evaluates a small, side-effect free subset of Python expressions.

    Supported: literals, names looked up in the context, attribute and
    subscript access, arithmetic, comparisons, ``and``/``or``/``not`` and
    conditional expressions. Calls, lambdas, comprehensions and private
    attributes are rejected.

    Example:
        evaluator = SafeExpressionEvaluator()
        evaluator.evaluate("me.hp < 50 and role == 'CLR'", {"me": vitals, "role": "CLR"})
    """

    def evaluate(self, expression: str, context: dict[str, Any]) -> bool:
        tree = ast.parse(expression, mode="eval")
        return bool(self._eval(tree.body, context))

    def _eval(self, node: ast.AST, context: dict[str, Any]) -> Any:
        if isinstance(node, ast.Constant):
            return node.value
        if isinstance(node, ast.Name):
            if node.id in context:
                return context[node.id]
            raise NameError(f"name '{node.id}' is not defined")
        if isinstance(node, ast.Attribute):
            if node.attr.startswith("_"):
                raise ValueError(f"access to '{node.attr}' is not allowed")
            value = self._eval(node.value, context)
            if isinstance(value, dict):
                return value[node.attr]
            return getattr(value, node.attr)
        if isinstance(node, ast.Subscript):
            return self._eval(node.value, context)[self._eval(node.slice, context)]
        if isinstance(node, (ast.Tuple, ast.List)):
            return [self._eval(elt, context) for elt in node.elts]
        if isinstance(node, ast.BoolOp):
            if isinstance(node.op, ast.And):
                result: Any = True
                for value in node.values:
                    result = self._eval(value, context)
                    if not result:
                        return result
                return result
            result = False
            for value in node.values:
                result = self._eval(value, context)
                if result:
                    return result
            return result
        if isinstance(node, ast.UnaryOp):
            operand = self._eval(node.operand, context)
            if isinstance(node.op, ast.Not):
                return not operand
            if isinstance(node.op, ast.USub):
                return -operand
            if isinstance(node.op, ast.UAdd):
                return +operand
        if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
            return _BINARY_OPS[type(node.op)](
                self._eval(node.left, context), self._eval(node.right, context)
            )
        if isinstance(node, ast.Compare):
            left = self._eval(node.left, context)
            for op, comparator in zip(node.ops, node.comparators):
                right = self._eval(comparator, context)
                if not _COMPARE_OPS[type(op)](left, right):
                    return False
                left = right
            return True
        if isinstance(node, ast.IfExp):
            if self._eval(node.test, context):
                return self._eval(node.body, context)
            return self._eval(node.orelse, context)
        raise ValueError(f"unsupported expression element: {type(node).__name__}")


def check_condition(
    evaluator: PredicateEvaluator | None,
    expression: str | None,
    context: dict[str, Any] | None = None,
    debug: bool = False,
) -> bool:
    """Evaluate an optional condition, failing closed.

    An empty expression always passes. A non-empty expression with no
    evaluator, or one that errors, fails.

    Args:
        evaluator: Evaluator to use.
        expression: The condition; empty or None means unconditional.
        context: Values visible to the expression.
        debug: Log evaluation errors as warnings instead of debug messages.

    Returns:
        The condition's truth value.
    """
    if not expression or not expression.strip():
        return True
    if evaluator is None:
        logger.debug("No evaluator configured for condition %r", expression)
        return False
    try:
        return bool(evaluator.evaluate(expression, context or {}))
    except Exception as e:
        log = logger.warning if debug else logger.debug
        log("Condition error %r: %s", expression, e)
        return False
