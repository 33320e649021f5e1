"""Generation tree: node records, state machine and the node store."""

from gentree.tree.nodes import GenerationNode, ImagePrompt, StructuredContent, new_node_id
from gentree.tree.state import ChangeKind, GenerationMode, NodeStatus, NodeType
from gentree.tree.store import ANY, ROOTS, NodeStore, StoreEvent

__all__ = [
    "ANY",
    "ROOTS",
    "ChangeKind",
    "GenerationMode",
    "GenerationNode",
    "ImagePrompt",
    "NodeStatus",
    "NodeStore",
    "NodeType",
    "StoreEvent",
    "StructuredContent",
    "new_node_id",
]
