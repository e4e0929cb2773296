"""
Safe expression evaluation for loop conditions and math nodes.

Only a whitelisted subset of Python expressions is accepted: literals,
names from the supplied context, comparisons, boolean logic, arithmetic,
subscripts, attribute access on plain values and a handful of pure
builtins. Anything else (calls to arbitrary functions, lambdas,
comprehensions, dunder access) raises ``ValueError``.
"""

import ast
import operator
from typing import Any

SAFE_OPERATORS: dict[type, Any] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
    ast.Not: operator.not_,
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

SAFE_FUNCTIONS: dict[str, Any] = {
    "len": len,
    "int": int,
    "float": float,
    "str": str,
    "bool": bool,
    "abs": abs,
    "min": min,
    "max": max,
    "round": round,
    "sum": sum,
}

SAFE_METHODS = frozenset(
    {
        "lower",
        "upper",
        "strip",
        "startswith",
        "endswith",
        "split",
        "count",
        "find",
        "get",
        "keys",
        "values",
        "items",
    }
)

# Guard against huge exponents
MAX_POWER = 1000


class SafeEvalVisitor(ast.NodeVisitor):
    """Walks an expression AST, evaluating only whitelisted constructs."""

    def __init__(self, context: dict[str, Any]):
        self.context = context

    def visit(self, node: ast.AST) -> Any:
        method = getattr(self, f"visit_{type(node).__name__}", None)
        if method is None:
            raise ValueError(f"Unsupported expression: {type(node).__name__}")
        return method(node)

    def visit_Expression(self, node: ast.Expression) -> Any:
        return self.visit(node.body)

    def visit_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def visit_Name(self, node: ast.Name) -> Any:
        if node.id in self.context:
            return self.context[node.id]
        if node.id in SAFE_FUNCTIONS:
            return SAFE_FUNCTIONS[node.id]
        raise ValueError(f"Unknown name: {node.id}")

    def visit_List(self, node: ast.List) -> Any:
        return [self.visit(elt) for elt in node.elts]

    def visit_Tuple(self, node: ast.Tuple) -> Any:
        return tuple(self.visit(elt) for elt in node.elts)

    def visit_Dict(self, node: ast.Dict) -> Any:
        return {
            self.visit(k): self.visit(v) for k, v in zip(node.keys, node.values, strict=True)
        }

    def visit_BinOp(self, node: ast.BinOp) -> Any:
        op = SAFE_OPERATORS.get(type(node.op))
        if op is None:
            raise ValueError(f"Unsupported operator: {type(node.op).__name__}")
        left = self.visit(node.left)
        right = self.visit(node.right)
        if isinstance(node.op, ast.Pow) and isinstance(right, int | float) and right > MAX_POWER:
            raise ValueError("Exponent too large")
        return op(left, right)

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        op = SAFE_OPERATORS.get(type(node.op))
        if op is None:
            raise ValueError(f"Unsupported operator: {type(node.op).__name__}")
        return op(self.visit(node.operand))

    def visit_BoolOp(self, node: ast.BoolOp) -> Any:
        if isinstance(node.op, ast.And):
            result: Any = True
            for value in node.values:
                result = self.visit(value)
                if not result:
                    return result
            return result
        result = False
        for value in node.values:
            result = self.visit(value)
            if result:
                return result
        return result

    def visit_Compare(self, node: ast.Compare) -> Any:
        left = self.visit(node.left)
        for op_node, comparator in zip(node.ops, node.comparators, strict=True):
            op = SAFE_OPERATORS.get(type(op_node))
            if op is None:
                raise ValueError(f"Unsupported comparison: {type(op_node).__name__}")
            right = self.visit(comparator)
            if not op(left, right):
                return False
            left = right
        return True

    def visit_IfExp(self, node: ast.IfExp) -> Any:
        return self.visit(node.body) if self.visit(node.test) else self.visit(node.orelse)

    def visit_Subscript(self, node: ast.Subscript) -> Any:
        value = self.visit(node.value)
        index = self.visit(node.slice)
        return value[index]

    def visit_Slice(self, node: ast.Slice) -> Any:
        lower = self.visit(node.lower) if node.lower else None
        upper = self.visit(node.upper) if node.upper else None
        step = self.visit(node.step) if node.step else None
        return slice(lower, upper, step)

    def visit_Attribute(self, node: ast.Attribute) -> Any:
        if node.attr.startswith("_"):
            raise ValueError(f"Access to private attribute: {node.attr}")
        value = self.visit(node.value)
        if isinstance(value, dict) and node.attr not in SAFE_METHODS:
            return value.get(node.attr)
        if node.attr not in SAFE_METHODS:
            raise ValueError(f"Attribute not allowed: {node.attr}")
        return getattr(value, node.attr)

    def visit_Call(self, node: ast.Call) -> Any:
        func = self.visit(node.func)
        is_safe_function = func in SAFE_FUNCTIONS.values()
        is_safe_method = (
            isinstance(node.func, ast.Attribute) and node.func.attr in SAFE_METHODS
        )
        if not (is_safe_function or is_safe_method):
            raise ValueError("Function call not allowed")
        args = [self.visit(arg) for arg in node.args]
        kwargs = {kw.arg: self.visit(kw.value) for kw in node.keywords if kw.arg}
        return func(*args, **kwargs)


def safe_eval(expression: str, context: dict[str, Any] | None = None) -> Any:
    """
    Evaluate ``expression`` against ``context``.

    Raises:
        ValueError: for syntax errors and anything outside the whitelist
    """
    try:
        tree = ast.parse(expression.strip(), mode="eval")
    except SyntaxError as e:
        raise ValueError(f"Invalid expression: {e.msg}") from e
    return SafeEvalVisitor(context or {}).visit(tree)
