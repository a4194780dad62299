"""Safe boolean expressions over a run's context.

Condition nodes and conditional edges carry small expressions such as::

    trigger.amount > 100 and approval.approved
    context["ai-review"].confidence >= 0.9
    trigger.tier in ["gold", "platinum"]

Expressions are parsed with :mod:`ast` and walked by a whitelist
evaluator. There is no ``eval``: only literals, names, attribute/subscript
lookups into dicts, comparisons, boolean and arithmetic operators, and a
handful of pure builtins are accepted.

Name resolution:
    - every top-level context key (node ids, ``trigger``) is a name
    - ``context`` is the whole context mapping (for ids that are not identifiers)
    - ``output`` / ``conditionMet`` are the source node's output (edge conditions)
    - ``true`` / ``false`` / ``null`` are accepted as literals
    - unknown names and missing keys resolve to ``None``
"""

from __future__ import annotations

import ast
import operator
from collections.abc import Mapping
from functools import lru_cache
from typing import Any

from flowspine.core.errors import ConditionError


def _numbers_only(op: Any, symbol: str) -> Any:
    # str and list repetition or %-formatting could allocate without bound
    def apply(left: Any, right: Any) -> Any:
        if not isinstance(left, int | float) or not isinstance(right, int | float):
            raise ConditionError(
                f"'{symbol}' needs numbers, got {type(left).__name__} and {type(right).__name__}"
            )
        return op(left, right)

    return apply


_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: _numbers_only(operator.mul, "*"),
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: _numbers_only(operator.mod, "%"),
}

_COMPARISONS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
    ast.In: lambda x, y: y is not None and x in y,
    ast.NotIn: lambda x, y: y is None or x not in y,
}

_UNARY_OPS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
    ast.Not: operator.not_,
}

_FUNCTIONS = {
    "len": len,
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "abs": abs,
    "min": min,
    "max": max,
    "round": round,
}

_LITERAL_NAMES = {"true": True, "false": False, "null": None, "none": None}

_BRANCH_TRUE = frozenset({"true", "yes"})
_BRANCH_FALSE = frozenset({"false", "no", "else"})


@lru_cache(maxsize=512)
def _parse(expression: str) -> ast.expr:
    source = expression.strip().replace("&&", " and ").replace("||", " or ")
    try:
        return ast.parse(source, mode="eval").body
    except SyntaxError as e:
        raise ConditionError(f"Syntax error in condition: {e.msg}", expression=expression) from e


class ConditionEvaluator:
    """Evaluate expressions against a mapping of names."""

    def evaluate(self, expression: str, names: Mapping[str, Any]) -> Any:
        if not expression or not expression.strip():
            raise ConditionError("Empty condition expression", expression=expression or "")
        tree = _parse(expression)
        try:
            return self._eval(tree, names)
        except ConditionError:
            raise
        except Exception as e:
            raise ConditionError(
                f"Condition evaluation failed: {e}", expression=expression, cause=e
            ) from e

    def check(self, expression: str) -> None:
        """Parse without evaluating; raise :class:`ConditionError` on bad syntax."""
        if not expression or not expression.strip():
            raise ConditionError("Empty condition expression", expression=expression or "")
        _parse(expression)

    def test(self, expression: str, context: Mapping[str, Any]) -> bool:
        """Evaluate a condition node's expression to a bool."""
        return bool(self.evaluate(expression, _names_for(context)))

    def edge_matches(
        self,
        condition: str | None,
        context: Mapping[str, Any],
        source_output: Mapping[str, Any] | None,
    ) -> bool:
        """Decide whether an outgoing edge should be followed.

        ``None`` is unconditional. ``true``/``yes`` and ``false``/``no``/``else``
        select the branch of a preceding condition node by its ``conditionMet``
        output. Anything else is an expression.
        """
        if condition is None or not condition.strip():
            return True
        output = dict(source_output or {})
        keyword = condition.strip().lower()
        if keyword in _BRANCH_TRUE:
            return bool(output.get("conditionMet", True))
        if keyword in _BRANCH_FALSE:
            return not output.get("conditionMet", True)
        names = _names_for(context)
        names["output"] = output
        names["conditionMet"] = output.get("conditionMet")
        return bool(self.evaluate(condition, names))

    # -- AST walk ----------------------------------------------------------

    def _eval(self, node: ast.AST, names: Mapping[str, Any]) -> Any:
        if isinstance(node, ast.Constant):
            return node.value

        if isinstance(node, ast.Name):
            if node.id in names:
                return names[node.id]
            if node.id.lower() in _LITERAL_NAMES:
                return _LITERAL_NAMES[node.id.lower()]
            if node.id in _FUNCTIONS:
                return _FUNCTIONS[node.id]
            return None

        if isinstance(node, ast.Attribute):
            obj = self._eval(node.value, names)
            if isinstance(obj, Mapping):
                return obj.get(node.attr)
            return None

        if isinstance(node, ast.Subscript):
            obj = self._eval(node.value, names)
            key = self._eval(node.slice, names)
            if obj is None:
                return None
            if isinstance(obj, Mapping):
                return obj.get(key)
            if isinstance(obj, (list, tuple, str)) and isinstance(key, int):
                return obj[key] if -len(obj) <= key < len(obj) else None
            return None

        if isinstance(node, ast.BoolOp):
            if isinstance(node.op, ast.And):
                result: Any = True
                for value in node.values:
                    result = self._eval(value, names)
                    if not result:
                        return result
                return result
            result = False
            for value in node.values:
                result = self._eval(value, names)
                if result:
                    return result
            return result

        if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
            return _UNARY_OPS[type(node.op)](self._eval(node.operand, names))

        if isinstance(node, ast.BinOp) and type(node.op) in _BIN_OPS:
            return _BIN_OPS[type(node.op)](self._eval(node.left, names), self._eval(node.right, names))

        if isinstance(node, ast.Compare):
            left = self._eval(node.left, names)
            for op, comparator in zip(node.ops, node.comparators):
                right = self._eval(comparator, names)
                fn = _COMPARISONS.get(type(op))
                if fn is None:
                    raise ConditionError(f"Unsupported comparison: {type(op).__name__}")
                try:
                    ok = fn(left, right)
                except TypeError:
                    # Ordering against a missing value is false, not an error.
                    ok = False
                if not ok:
                    return False
                left = right
            return True

        if isinstance(node, ast.IfExp):
            branch = node.body if self._eval(node.test, names) else node.orelse
            return self._eval(branch, names)

        if isinstance(node, (ast.List, ast.Tuple, ast.Set)):
            items = [self._eval(elt, names) for elt in node.elts]
            return set(items) if isinstance(node, ast.Set) else items

        if isinstance(node, ast.Dict):
            return {
                self._eval(k, names): self._eval(v, names)
                for k, v in zip(node.keys, node.values)
                if k is not None
            }

        if isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name) or node.func.id not in _FUNCTIONS:
                raise ConditionError("Only builtin helper functions may be called")
            if node.keywords:
                raise ConditionError("Keyword arguments are not supported")
            args = [self._eval(arg, names) for arg in node.args]
            return _FUNCTIONS[node.func.id](*args)

        raise ConditionError(f"Unsupported expression element: {type(node).__name__}")


def _names_for(context: Mapping[str, Any]) -> dict[str, Any]:
    names = dict(context)
    names["context"] = dict(context)
    return names


default_evaluator = ConditionEvaluator()
