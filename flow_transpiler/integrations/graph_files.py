import json
import logging
from pathlib import Path
from typing import Optional

from flow_transpiler.graph.schema import graph_to_dict
from flow_transpiler.transpiler.api import TranspileResult, parse, transpile
from flow_transpiler.transpiler.parser import ParseResult

logger = logging.getLogger(__name__)


def graph_json_file_to_yaml(json_path: Path, yaml_path: Path, force_strategy: Optional[str] = None) -> TranspileResult:
    """
    Load an editor graph from JSON, transpile it and write the automation YAML.
    Nothing is written when transpiling fails.
    """
    raw = json.loads(json_path.read_text())
    result = transpile(raw, force_strategy=force_strategy)
    if not result.success:
        logger.error(f"Could not transpile {json_path}: {'; '.join(result.errors)}")
        return result
    for warning in result.warnings:
        logger.warning(f"{json_path}: {warning}")
    yaml_path.write_text(result.document)
    logger.info(f"Wrote {result.output.strategy} automation to {yaml_path}")
    return result


def yaml_file_to_graph_json(yaml_path: Path, json_path: Path) -> ParseResult:
    """
    Parse an automation YAML file and write the editor graph as JSON.
    Nothing is written when parsing fails.
    """
    result = parse(yaml_path.read_text())
    if not result.success:
        logger.error(f"Could not parse {yaml_path}: {'; '.join(result.errors)}")
        return result
    for warning in result.warnings:
        logger.warning(f"{yaml_path}: {warning}")
    json_path.write_text(json.dumps(graph_to_dict(result.graph), indent=2))
    logger.info(f"Wrote graph with {len(result.graph.nodes)} nodes to {json_path}")
    return result
