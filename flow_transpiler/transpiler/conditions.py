""" Recursive condition payloads (AND/OR/NOT groups) and their shorthand forms. """

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from flow_transpiler import config
from .errors import OutputSizeError, StructuralError

GROUP_CONDITIONS = ("and", "or", "not")


@dataclass
class ConditionData:
    condition: str
    options: Dict[str, Any] = field(default_factory=dict)
    subconditions: List["ConditionData"] = field(default_factory=list)

    @property
    def is_group(self) -> bool:
        return self.condition in GROUP_CONDITIONS

    @classmethod
    def from_config(cls, raw: Any, _depth: int = 0, _leaves: Optional[List[int]] = None) -> "ConditionData":
        """
        Build a ConditionData tree from a condition entry, expanding the
        string template form and the `and:`/`or:`/`not:` key forms.
        Raises OutputSizeError when nesting or size limits are exceeded.
        """
        if _leaves is None:
            _leaves = [0]
        if _depth > config.MAX_CONDITION_DEPTH:
            raise OutputSizeError(
                f"Condition nesting exceeds {config.MAX_CONDITION_DEPTH} levels"
            )
        _leaves[0] += 1
        if _leaves[0] > config.MAX_CONDITION_LEAVES:
            raise OutputSizeError(
                f"Condition has more than {config.MAX_CONDITION_LEAVES} entries"
            )

        if isinstance(raw, str):
            return cls(condition="template", options={"value_template": raw})
        if not isinstance(raw, dict):
            raise StructuralError(f"Condition must be a mapping or template string, got {type(raw).__name__}")

        options = dict(raw)
        kind = options.pop("condition", None)
        if kind is None:
            shorthand = [key for key in GROUP_CONDITIONS if key in options]
            if len(shorthand) != 1:
                raise StructuralError(f"Condition is missing the 'condition' key: {raw}")
            kind = shorthand[0]
            options["conditions"] = options.pop(kind)
        elif isinstance(kind, str) and "{{" in kind:
            options["value_template"] = kind
            kind = "template"
        if not isinstance(kind, str):
            raise StructuralError(f"Condition type must be a string, got {kind!r}")

        subconditions = []
        if kind in GROUP_CONDITIONS:
            children = options.pop("conditions", [])
            if not isinstance(children, list):
                children = [children]
            for child in children:
                subconditions.append(cls.from_config(child, _depth + 1, _leaves))
        return cls(condition=kind, options=options, subconditions=subconditions)

    def to_config(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"condition": self.condition}
        out.update(self.options)
        if self.is_group:
            out["conditions"] = [sub.to_config() for sub in self.subconditions]
        return out


def normalize_condition(raw: Any) -> Dict[str, Any]:
    """Canonical `condition:` mapping for a single condition entry."""
    return ConditionData.from_config(raw).to_config()


def condition_payload(raw: Any) -> Dict[str, Any]:
    """
    Payload for one Condition node built from a condition list, as found
    under `if:` or a choose option's `conditions:`. Several conditions
    become a single implicit `and` group.
    """
    if not isinstance(raw, list):
        return normalize_condition(raw)
    if len(raw) == 1:
        return normalize_condition(raw[0])
    return normalize_condition({"condition": "and", "conditions": raw})


def condition_list(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Inverse of condition_payload: a plain `and` group is emitted as a list.
    A group with a single child stays wrapped, since a one-entry list reads
    back as the bare child.
    """
    children = data.get("conditions")
    if (set(data.keys()) == {"condition", "conditions"} and data["condition"] == "and"
            and isinstance(children, list) and len(children) != 1):
        return list(children)
    return [data]
