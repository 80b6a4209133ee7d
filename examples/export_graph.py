""" Example: convert an automation YAML into the editor graph JSON and back. """
import logging
from pathlib import Path

from flow_transpiler import config
from flow_transpiler.integrations.graph_files import graph_json_file_to_yaml, yaml_file_to_graph_json


def main():
    logging.basicConfig(level=logging.INFO)
    yaml_path = config.EXAMPLES_DIR / "automations" / "hallway_motion.yaml"
    json_path = Path("hallway_motion_graph.json")
    round_trip_path = Path("hallway_motion_roundtrip.yaml")

    yaml_file_to_graph_json(yaml_path, json_path)
    print(f"Wrote graph JSON to: {json_path}")

    graph_json_file_to_yaml(json_path, round_trip_path)
    print(f"Wrote automation YAML to: {round_trip_path}")


if __name__ == '__main__':
    main()
