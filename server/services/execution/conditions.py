"""Condition evaluation for condition nodes, while-loops and branch gating.

Expressions use a small JavaScript-like grammar over a `data` root object:

    data.value > 10
    data.hasMore === true && data.items.length > 0
    !(data.status == 'done') || data.retries >= 3

Supported:
- Comparisons: == != === !== < <= > >=
- Boolean connectives: && || ! (and the words and / or / not)
- Arithmetic: + - * / % and unary minus
- Dotted paths, [index] / ["key"] subscripts and .length
- Literals: numbers, 'strings', "strings", true, false, null, undefined

Expressions are tokenized, translated to Python expression syntax and
evaluated by an AST visitor that only accepts the node types above. Nothing
is ever passed to eval(). Any parse or runtime failure evaluates to False.
"""

import ast
import operator
import re
from typing import Dict, Any, List

from core.logging import get_logger
from services.execution.interpolation import MISSING, resolve_path

logger = get_logger(__name__)


def get_nested_value(data: Dict[str, Any], field_path: str) -> Any:
    """Get a nested value from a dictionary using dot notation.

    Args:
        data: Dictionary to extract value from
        field_path: Dot-separated path (e.g., "result.status", "items.0.name")

    Returns:
        Value at path or None if not found

    Examples:
        >>> get_nested_value({"result": {"status": "ok"}}, "result.status")
        "ok"
        >>> get_nested_value({"items": [{"name": "a"}]}, "data.items.0.name")
        "a"
    """
    if data is None or not field_path:
        return None
    value = resolve_path(data, field_path)
    return None if value is MISSING else value


# =============================================================================
# TOKENIZER
# =============================================================================

_TOKEN_PATTERN = re.compile(r"""
    (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
  | (?P<number>\d+(?:\.\d+)?)
  | (?P<op>===|!==|==|!=|<=|>=|&&|\|\||!|<|>|\+|-|\*|/|%|\(|\)|\[|\]|\.|,)
  | (?P<name>[A-Za-z_][A-Za-z0-9_]*)
  | (?P<space>\s+)
""", re.VERBOSE)

_OPERATOR_TRANSLATIONS = {
    "===": "==",
    "!==": "!=",
    "&&": " and ",
    "||": " or ",
    "!": " not ",
}

_NAME_TRANSLATIONS = {
    "true": "True",
    "false": "False",
    "null": "None",
    "undefined": "None",
}


def translate_expression(expression: str) -> str:
    """Translate a JavaScript-like expression into Python expression syntax.

    Raises:
        ValueError: If the expression contains characters outside the grammar
    """
    parts: List[str] = []
    position = 0
    while position < len(expression):
        match = _TOKEN_PATTERN.match(expression, position)
        if not match:
            raise ValueError(f"Unexpected character {expression[position]!r} at {position}")
        kind = match.lastgroup
        text = match.group(kind)
        if kind == "op":
            parts.append(_OPERATOR_TRANSLATIONS.get(text, text))
        elif kind == "name":
            parts.append(_NAME_TRANSLATIONS.get(text, text))
        elif kind != "space":
            parts.append(text)
        else:
            parts.append(" ")
        position = match.end()
    return "".join(parts).strip()


# =============================================================================
# SAFE EVALUATOR
# =============================================================================

_BINARY_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
}

_COMPARE_OPERATORS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
}

_ORDERING_OPERATORS = (ast.Lt, ast.LtE, ast.Gt, ast.GtE)

_SEQUENCE_TYPES = (str, list, tuple)


def _coerce_numeric(left: Any, right: Any):
    """Coerce a numeric string against a number for ordering comparisons."""
    numeric = (int, float)
    if isinstance(left, numeric) and isinstance(right, str):
        return left, float(right)
    if isinstance(left, str) and isinstance(right, numeric):
        return float(left), right
    return left, right


class SafeEvaluator(ast.NodeVisitor):
    """AST visitor restricted to the condition grammar."""

    def __init__(self, variables: Dict[str, Any]):
        self.variables = variables

    def visit_Expression(self, node):
        return self.visit(node.body)

    def visit_Constant(self, node):
        if not isinstance(node.value, (str, int, float, bool, type(None))):
            raise ValueError(f"Literal not allowed: {node.value!r}")
        return node.value

    def visit_Name(self, node):
        if node.id in self.variables:
            return self.variables[node.id]
        raise ValueError(f"Undefined variable: {node.id}")

    def visit_Attribute(self, node):
        target = self.visit(node.value)
        if target is None:
            raise TypeError(f"Cannot read property '{node.attr}' of undefined")
        if isinstance(target, dict):
            return target.get(node.attr)
        if node.attr == "length" and isinstance(target, (list, tuple, str)):
            return len(target)
        return None

    def visit_Subscript(self, node):
        target = self.visit(node.value)
        key = self.visit(node.slice)
        if target is None:
            raise TypeError(f"Cannot read property {key!r} of undefined")
        if isinstance(target, dict):
            return target.get(key if isinstance(key, str) else str(key))
        if isinstance(target, (list, tuple, str)) and isinstance(key, int) and not isinstance(key, bool):
            return target[key] if 0 <= key < len(target) else None
        return None

    def visit_UnaryOp(self, node):
        operand = self.visit(node.operand)
        if isinstance(node.op, ast.Not):
            return not operand
        if isinstance(node.op, ast.USub):
            return -operand
        if isinstance(node.op, ast.UAdd):
            return +operand
        raise ValueError(f"Operator not allowed: {type(node.op).__name__}")

    def visit_BinOp(self, node):
        op = _BINARY_OPERATORS.get(type(node.op))
        if op is None:
            raise ValueError(f"Operator not allowed: {type(node.op).__name__}")
        left, right = self.visit(node.left), self.visit(node.right)
        # str/list repetition and %-formatting can allocate without bound
        if isinstance(node.op, (ast.Mult, ast.Mod)) and (
                isinstance(left, _SEQUENCE_TYPES) or isinstance(right, _SEQUENCE_TYPES)):
            raise ValueError(f"Operator not allowed on sequences: {type(node.op).__name__}")
        return op(left, right)

    def visit_Compare(self, node):
        left = self.visit(node.left)
        for op_node, comparator in zip(node.ops, node.comparators):
            op = _COMPARE_OPERATORS.get(type(op_node))
            if op is None:
                raise ValueError(f"Operator not allowed: {type(op_node).__name__}")
            right = self.visit(comparator)
            a, b = _coerce_numeric(left, right) if isinstance(op_node, _ORDERING_OPERATORS) else (left, right)
            if not op(a, b):
                return False
            left = right
        return True

    def visit_BoolOp(self, node):
        # Short-circuit and return the deciding operand, as && and || do
        result = None
        for value_node in node.values:
            result = self.visit(value_node)
            if isinstance(node.op, ast.And) and not result:
                return result
            if isinstance(node.op, ast.Or) and result:
                return result
        return result

    def generic_visit(self, node):
        raise ValueError(f"Expression element not allowed: {type(node).__name__}")


def evaluate_expression(expression: str, data: Dict[str, Any]) -> bool:
    """Evaluate a condition expression against a data context.

    Never raises: parse and runtime errors are logged and yield False.
    """
    if not expression or not isinstance(expression, str):
        return False

    try:
        tree = ast.parse(translate_expression(expression), mode="eval")
        result = SafeEvaluator({"data": data}).visit(tree)
        return bool(result)

    except Exception as e:
        logger.warning("Condition evaluation failed", expression=expression, error=str(e))
        return False
