import os
from pathlib import Path

# Define the root directory of the project
ROOT_DIR = Path(__file__).resolve().parent.parent

# Default location for example graphs and exported automations
EXAMPLES_DIR = ROOT_DIR / "examples"


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got {raw!r}")


# Metadata block stored under the automation's `variables` section
METADATA_KEY = "_flowgraph_metadata"
METADATA_SCHEMA_VERSION = 1

# State-machine emulation
STATE_VARIABLE = "current_node"
END_STATE = "END"
MAX_ITERATIONS = _int_env("FLOW_TRANSPILER_MAX_ITERATIONS", 1000)

# Structural budgets
MAX_NESTING_DEPTH = _int_env("FLOW_TRANSPILER_MAX_NESTING_DEPTH", 32)
MAX_CONDITION_DEPTH = _int_env("FLOW_TRANSPILER_MAX_CONDITION_DEPTH", 16)
MAX_CONDITION_LEAVES = _int_env("FLOW_TRANSPILER_MAX_CONDITION_LEAVES", 256)
CHOOSE_NODES_PER_OPTION = _int_env("FLOW_TRANSPILER_CHOOSE_NODES_PER_OPTION", 64)
MAX_GRAPH_NODES = _int_env("FLOW_TRANSPILER_MAX_GRAPH_NODES", 5000)

# Strategy names
STRATEGY_NATIVE = "native"
STRATEGY_STATE_MACHINE = "state-machine"
STRATEGIES = (STRATEGY_NATIVE, STRATEGY_STATE_MACHINE)
