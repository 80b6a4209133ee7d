import ast
from typing import Any, Dict, List

from .context import SimulationContext


def evaluate_condition(condition: Dict[str, Any], context: SimulationContext) -> bool:
    """
    Evaluate a condition payload against the context's entity states,
    trigger id and variables. Condition kinds that need a live runtime
    (time, sun, zone, device, ...) evaluate to False.
    """
    if condition.get("enabled") is False:
        return True

    kind = condition.get("condition")
    if kind == "and":
        return all(evaluate_condition(c, context) for c in condition.get("conditions", []))
    if kind == "or":
        return any(evaluate_condition(c, context) for c in condition.get("conditions", []))
    if kind == "not":
        return not any(evaluate_condition(c, context) for c in condition.get("conditions", []))
    if kind == "state":
        return _state_matches(condition, context)
    if kind == "numeric_state":
        return _numeric_state_matches(condition, context)
    if kind == "trigger":
        ids = condition.get("id")
        ids = ids if isinstance(ids, list) else [ids]
        return context.trigger_id in ids
    if kind == "template":
        return evaluate_template(condition.get("value_template", ""), context)
    return False


def evaluate_conditions(conditions: List[Dict[str, Any]], context: SimulationContext) -> bool:
    return all(evaluate_condition(c, context) for c in conditions)


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else [value]


def _state_matches(condition: Dict[str, Any], context: SimulationContext) -> bool:
    expected = [str(s) for s in _as_list(condition.get("state"))]
    entities = _as_list(condition.get("entity_id"))
    return all(str(context.states.get(e)) in expected for e in entities)


def _numeric_state_matches(condition: Dict[str, Any], context: SimulationContext) -> bool:
    for entity in _as_list(condition.get("entity_id")):
        try:
            value = float(context.states.get(entity))
        except (TypeError, ValueError):
            return False
        if "above" in condition and not value > float(condition["above"]):
            return False
        if "below" in condition and not value < float(condition["below"]):
            return False
    return True


def evaluate_template(template: str, context: SimulationContext) -> bool:
    """
    Evaluate a `{{ expression }}` template made of comparisons, boolean
    operators, names and attribute lookups. Anything else is False.
    """
    expression = template.strip()
    if expression.startswith("{{") and expression.endswith("}}"):
        expression = expression[2:-2]
    expression = expression.strip()
    if expression.lower() in ("true", ""):
        return True

    namespace = {"true": True, "false": False, "none": None, **context.variables}
    try:
        return bool(_safe_eval(expression, namespace))
    except (ValueError, KeyError, TypeError, SyntaxError):
        return False


def _safe_eval(expression: str, namespace: Dict[str, Any]) -> Any:
    node = ast.parse(expression, mode='eval')

    def _eval(node):
        if isinstance(node, ast.Expression):
            return _eval(node.body)

        if isinstance(node, ast.BoolOp):
            values = [_eval(v) for v in node.values]
            if isinstance(node.op, ast.And):
                return all(values)
            return any(values)

        if isinstance(node, ast.UnaryOp) and isinstance(node.op, ast.Not):
            return not _eval(node.operand)

        if isinstance(node, ast.Compare):
            left = _eval(node.left)
            for op, comparator in zip(node.ops, node.comparators):
                right = _eval(comparator)
                if isinstance(op, ast.Eq):      ok = (left == right)
                elif isinstance(op, ast.NotEq): ok = (left != right)
                elif isinstance(op, ast.Lt):    ok = (left < right)
                elif isinstance(op, ast.LtE):   ok = (left <= right)
                elif isinstance(op, ast.Gt):    ok = (left > right)
                elif isinstance(op, ast.GtE):   ok = (left >= right)
                else:
                    raise ValueError(f"Unsupported operator: {op}")
                if not ok:
                    return False
                left = right
            return True

        if isinstance(node, ast.Attribute):
            value = _eval(node.value)
            if isinstance(value, dict):
                return value[node.attr]
            raise ValueError(f"Unsupported attribute lookup: {node.attr}")
        if isinstance(node, ast.Name):
            return namespace[node.id]
        if isinstance(node, ast.Constant):
            return node.value
        raise ValueError("Unsupported expression")

    return _eval(node)
