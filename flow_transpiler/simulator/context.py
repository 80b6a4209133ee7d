""" Execution context for simulated automation runs. """
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional


@dataclass
class SimulationContext:
    states: Dict[str, Any] = field(default_factory=dict)  # entity_id -> state
    trigger_index: int = 0
    trigger_id: Optional[str] = None
    variables: Dict[str, Any] = field(default_factory=dict)
    trace: List[str] = field(default_factory=list)
    logs: List[Dict[str, Any]] = field(default_factory=list)

    def set_many(self, kv: Dict[str, Any]):
        self.variables.update(kv)
