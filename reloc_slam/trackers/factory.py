"""
Tracker composition factory.

Builds a tracker tree from a declarative document, XML or YAML:

    <tracker type="composite" policy="sequential">
      <tracker type="remote"/>
      <tracker type="import" name="ground_truth"/>
      <tracker type="force_fail"/>
    </tracker>

    tracker:
      type: composite
      policy: refine
      trackers:
        - {type: disk, params: "poses/frame-%06i.pose.txt"}
        - {type: static}

Node kinds are dispatched on "type": "composite" (policy + ordered children),
"import" (loads <name>.xml/.yaml/.yml from the configuration directory and
expands it in place) or a primitive type registered with the factory.
Primitive builders see context.nested set for any tracker below the root.

Nodes are built bottom-up into an arena (a list addressed by index). The
resulting TrackerTree resolves its unique fallible tracker by walking the arena
from the root once construction is complete.
"""

from __future__ import annotations

import logging
import os
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import yaml

from reloc_slam.common import constants
from reloc_slam.trackers.base import FallibleTracker, Tracker
from reloc_slam.trackers.composite import CompositePolicy, CompositeTracker
from reloc_slam.trackers.simple import DiskTracker, ForceFailTracker, RemoteTracker, StaticTracker

_logger = logging.getLogger(__name__)


class TrackerConfigError(ValueError):
    """Malformed or inconsistent tracker configuration."""


@dataclass
class TrackerBuildContext:
    """Everything a primitive tracker builder may need."""
    scene_id: str
    track_surfels: bool = False
    rgb_image_size: Tuple[int, int] = (640, 480)
    depth_image_size: Tuple[int, int] = (640, 480)
    settings: Any = None
    low_level_engine: Any = None
    imu_calibrator: Any = None
    mapping_server: Any = None
    # True when the tracker being built sits below a composite or an import.
    nested: bool = False


TrackerBuilder = Callable[[str, TrackerBuildContext], Tracker]


@dataclass
class TrackerNode:
    kind: str  # "primitive" | "composite"
    type_name: str
    tracker: Tracker
    children: Tuple[int, ...] = ()
    nested: bool = False


@dataclass
class TrackerTree:
    nodes: List[TrackerNode]
    root_index: int
    fallible_index: Optional[int] = field(default=None)

    @property
    def root(self) -> Tracker:
        return self.nodes[self.root_index].tracker

    @property
    def fallible_tracker(self) -> Optional[FallibleTracker]:
        if self.fallible_index is None:
            return None
        return self.nodes[self.fallible_index].tracker

    def walk(self) -> List[int]:
        """Arena indices reachable from the root, depth-first, pre-order."""
        order: List[int] = []
        stack = [self.root_index]
        while stack:
            index = stack.pop()
            order.append(index)
            stack.extend(reversed(self.nodes[index].children))
        return order


def _build_disk(params: str, context: TrackerBuildContext) -> Tracker:
    return DiskTracker(params.strip())


def _build_remote(params: str, context: TrackerBuildContext) -> Tracker:
    if context.mapping_server is None:
        raise TrackerConfigError("tracker type 'remote' requires a mapping server")
    return RemoteTracker(context.mapping_server, context.scene_id)


_BUILTIN_BUILDERS: Dict[str, TrackerBuilder] = {
    "static": lambda params, context: StaticTracker(),
    "force_fail": lambda params, context: ForceFailTracker(),
    "disk": _build_disk,
    "remote": _build_remote,
}


# =============================================================================
# Document parsing (XML or YAML -> nested dicts)
# =============================================================================


def _xml_to_spec(element: ET.Element) -> Dict[str, Any]:
    spec: Dict[str, Any] = dict(element.attrib)
    params = element.find("params")
    if params is not None:
        spec["params"] = (params.text or "").strip()
    spec["trackers"] = [_xml_to_spec(child) for child in element.findall("tracker")]
    return spec


def parse_tracker_document(text: str, source: str = "<string>") -> Dict[str, Any]:
    """Parse an XML or YAML tracker document (detected from its first non-blank character)."""
    stripped = text.lstrip()
    if not stripped:
        raise TrackerConfigError(f"empty tracker configuration ({source})")

    if stripped.startswith("<"):
        try:
            root = ET.fromstring(stripped)
        except ET.ParseError as exc:
            raise TrackerConfigError(f"malformed XML tracker configuration ({source}): {exc}") from exc
        if root.tag != "tracker":
            trackers = root.findall("tracker")
            if len(trackers) != 1:
                raise TrackerConfigError(
                    f"expected a single <tracker> element in {source}, found {len(trackers)}"
                )
            root = trackers[0]
        return _xml_to_spec(root)

    try:
        data = yaml.safe_load(stripped)
    except yaml.YAMLError as exc:
        raise TrackerConfigError(f"malformed YAML tracker configuration ({source}): {exc}") from exc
    if isinstance(data, dict) and "type" not in data and "tracker" in data:
        data = data["tracker"]
    if not isinstance(data, dict):
        raise TrackerConfigError(f"tracker configuration must be a mapping ({source})")
    return data


# =============================================================================
# Factory
# =============================================================================


class TrackerFactory:
    def __init__(self, config_dir: Optional[Union[str, Path]] = None):
        self.config_dir = str(config_dir) if config_dir is not None else None
        self._builders: Dict[str, TrackerBuilder] = dict(_BUILTIN_BUILDERS)

    def register(self, type_name: str, builder: TrackerBuilder) -> None:
        if type_name in ("composite", "import"):
            raise ValueError(f"tracker type '{type_name}' is reserved")
        self._builders[type_name] = builder

    @property
    def tracker_types(self) -> List[str]:
        return sorted(self._builders)

    def make_tracker_from_file(self, path: Union[str, Path], context: TrackerBuildContext) -> TrackerTree:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
        base_dir = self.config_dir or os.path.dirname(os.path.abspath(path))
        return self._make_tree(parse_tracker_document(text, str(path)), context, base_dir)

    def make_tracker_from_string(self, text: str, context: TrackerBuildContext) -> TrackerTree:
        return self._make_tree(parse_tracker_document(text), context, self.config_dir or os.getcwd())

    def make_simple_tracker(self, type_name: str, context: TrackerBuildContext, params: str = "") -> TrackerTree:
        return self._make_tree({"type": type_name, "params": params}, context, self.config_dir or os.getcwd())

    def _make_tree(self, spec: Dict[str, Any], context: TrackerBuildContext, base_dir: str) -> TrackerTree:
        nodes: List[TrackerNode] = []
        root_index = self._build(spec, context, base_dir, nodes, nested=False)
        tree = TrackerTree(nodes=nodes, root_index=root_index)

        fallible = [i for i in tree.walk() if isinstance(nodes[i].tracker, FallibleTracker)]
        if len(fallible) > 1:
            names = [nodes[i].type_name for i in fallible]
            raise TrackerConfigError(f"at most one fallible tracker is allowed, found {len(fallible)}: {names}")
        tree.fallible_index = fallible[0] if fallible else None

        _logger.info(
            "Built tracker tree for scene '%s': %d nodes, root '%s', fallible: %s",
            context.scene_id,
            len(nodes),
            nodes[root_index].type_name,
            nodes[tree.fallible_index].type_name if tree.fallible_index is not None else "none",
        )
        return tree

    def _build(
        self,
        spec: Dict[str, Any],
        context: TrackerBuildContext,
        base_dir: str,
        nodes: List[TrackerNode],
        nested: bool,
    ) -> int:
        if not isinstance(spec, dict):
            raise TrackerConfigError(f"tracker node must be a mapping, got {type(spec).__name__}")
        type_name = spec.get("type")
        if not type_name:
            raise TrackerConfigError("tracker node is missing its 'type'")
        type_name = str(type_name)

        if type_name == "import":
            return self._build_import(spec, context, base_dir, nodes)

        if type_name == "composite":
            policy_name = str(spec.get("policy", CompositePolicy.SEQUENTIAL.value))
            try:
                policy = CompositePolicy(policy_name)
            except ValueError:
                raise TrackerConfigError(f"unknown composite policy: '{policy_name}'") from None
            children_specs = spec.get("trackers") or []
            if not children_specs:
                raise TrackerConfigError("composite tracker has no child trackers")
            children = tuple(self._build(c, context, base_dir, nodes, nested=True) for c in children_specs)
            tracker = CompositeTracker([nodes[i].tracker for i in children], policy)
            nodes.append(TrackerNode("composite", type_name, tracker, children, nested))
            return len(nodes) - 1

        builder = self._builders.get(type_name)
        if builder is None:
            raise TrackerConfigError(f"unknown tracker type: '{type_name}'")
        params = spec.get("params")
        tracker = builder("" if params is None else str(params), replace(context, nested=nested))
        nodes.append(TrackerNode("primitive", type_name, tracker, (), nested))
        return len(nodes) - 1

    def _build_import(
        self, spec: Dict[str, Any], context: TrackerBuildContext, base_dir: str, nodes: List[TrackerNode]
    ) -> int:
        name = spec.get("name")
        if not name:
            raise TrackerConfigError("import tracker node is missing its 'name'")
        for ext in constants.TRACKER_CONFIG_EXTENSIONS:
            path = os.path.join(base_dir, f"{name}{ext}")
            if os.path.isfile(path):
                break
        else:
            raise TrackerConfigError(f"cannot resolve tracker import '{name}' in {base_dir}")
        with open(path, "r", encoding="utf-8") as f:
            imported = parse_tracker_document(f.read(), path)
        _logger.debug("Expanding tracker import '%s' from %s", name, path)
        # Imported documents are always nested in the importing tree.
        return self._build(imported, context, base_dir, nodes, nested=True)
