"""Node store for the generation tree.

The NodeStore is the single source of truth for generation nodes. It owns
identity, parent/child links, the status state machine and soft deletion,
and notifies subscribers synchronously after every committed mutation.

Nodes are frozen; every mutation swaps in a new instance, so a mutation
either fully applies or leaves the store untouched.
"""

from __future__ import annotations

import time
from collections import defaultdict
from collections.abc import Callable, Iterator
from dataclasses import dataclass, fields, replace
from typing import Any

from gentree.errors import (
    DanglingParentError,
    DuplicateNodeError,
    InvalidTransitionError,
    NotFoundError,
    SealedNodeError,
)
from gentree.logging import TRACE, get_logger
from gentree.tree.nodes import GenerationNode
from gentree.tree.state import ChangeKind, NodeStatus

log = get_logger("store")

# Subscription keys besides node ids
ROOTS = "__roots__"
ANY = "__any__"

_FIELD_NAMES = frozenset(f.name for f in fields(GenerationNode))
_IMMUTABLE_FIELDS = frozenset({"node_id", "parent_id", "root_id", "children", "created_at"})
# Fields a user may still edit after the node is sealed
_SEALED_EDITABLE = frozenset({"visible", "selected", "structured_content"})
_COUNTERS = ("tokens_input", "tokens_output", "cost")


@dataclass(frozen=True, slots=True)
class StoreEvent:
    """A committed store mutation."""

    kind: ChangeKind
    node: GenerationNode


Subscriber = Callable[[StoreEvent], None]


class NodeStore:
    """Addressable store of generation nodes forming one or more trees.

    Deleted nodes are tombstones: they stay stored so that children can
    still resolve their parent, but every traversal and query skips them.

    Usage:
        store = NodeStore()
        root = store.insert(GenerationNode.create(NodeType.IDEA, GenerationMode.DIRECT))
        fork = store.branch(root.node_id, "edited text")
        store.children_of(root.node_id)  # [fork]
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._nodes: dict[str, GenerationNode] = {}  # Insertion order = creation order
        self._subscribers: dict[str, list[Subscriber]] = defaultdict(list)
        self._clock = clock

    def now(self) -> float:
        """Current time on the store's clock, for stamping new nodes."""
        return self._clock()

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def insert(self, node: GenerationNode) -> GenerationNode:
        """Add a newly created node, linking it under its parent.

        Args:
            node: A pending node with no children.

        Returns:
            The stored node, with ``root_id`` resolved.

        Raises:
            DuplicateNodeError: The id is already stored.
            DanglingParentError: ``parent_id`` is missing or deleted.
        """
        if node.node_id in self._nodes:
            raise DuplicateNodeError(node.node_id)
        if node.children:
            raise ValueError(f"New node {node.node_id} cannot already have children")
        if node.status is not NodeStatus.PENDING:
            raise ValueError(f"New node {node.node_id} must be pending, got {node.status}")

        parent: GenerationNode | None = None
        if node.parent_id is not None:
            parent = self._nodes.get(node.parent_id)
            if parent is None:
                raise DanglingParentError(node.parent_id)
            if parent.deleted:
                raise DanglingParentError(node.parent_id, "deleted")

        root_id = (parent.root_id or parent.node_id) if parent else node.node_id
        stored = replace(node, root_id=root_id)

        self._nodes[stored.node_id] = stored
        if parent is not None:
            self._nodes[parent.node_id] = replace(
                parent, children=(*parent.children, stored.node_id)
            )

        log.debug("Inserted %s (%s) under %s", stored.node_id, stored.node_type, node.parent_id)
        self._notify(ChangeKind.INSERTED, stored)
        return stored

    def update(self, node_id: str, **changes: Any) -> GenerationNode:
        """Merge ``changes`` into a node.

        Raises:
            NotFoundError: ``node_id`` is not stored.
            TypeError: An unknown field name was given.
            ValueError: An identity/link field or a negative counter was given.
            InvalidTransitionError: The status change violates the state machine.
            SealedNodeError: A sealed node's content or counters were changed.
        """
        node = self._nodes.get(node_id)
        if node is None:
            raise NotFoundError(node_id)

        unknown = changes.keys() - _FIELD_NAMES
        if unknown:
            raise TypeError(f"Unknown node fields: {sorted(unknown)}")
        immutable = changes.keys() & _IMMUTABLE_FIELDS
        if immutable:
            raise ValueError(f"Fields cannot be updated: {sorted(immutable)}")

        if node.is_terminal:
            sealed = changes.keys() - _SEALED_EDITABLE
            if sealed:
                log.warning("Rejected edit of sealed node %s: %s", node_id, sorted(sealed))
                raise SealedNodeError(
                    node_id, f"node is {node.status}; cannot change {sorted(sealed)}"
                )

        for counter in _COUNTERS:
            if counter in changes and changes[counter] < 0:
                raise ValueError(f"{counter} must be non-negative, got {changes[counter]}")

        target = node.status
        if "status" in changes:
            target = NodeStatus(changes["status"])
            if not node.status.can_transition_to(target):
                log.warning("Invalid transition for %s: %s -> %s", node_id, node.status, target)
                raise InvalidTransitionError(
                    node_id, f"cannot transition {node.status} -> {target}"
                )
            changes["status"] = target

        if changes.get("error_message") is not None and target is not NodeStatus.FAILED:
            raise InvalidTransitionError(node_id, "error_message requires failed status")

        if target.is_terminal and not node.is_terminal and changes.get("completed_at") is None:
            changes["completed_at"] = self._clock()

        updated = replace(node, **changes)
        self._nodes[node_id] = updated

        if target is not node.status:
            log.debug("Node %s: %s -> %s", node_id, node.status, target)
        else:
            log.log(TRACE, "Node %s updated: %s", node_id, sorted(changes))
        self._notify(ChangeKind.UPDATED, updated)
        return updated

    def soft_delete(self, node_id: str) -> bool:
        """Tombstone a node. Children and links are left alone.

        Returns:
            True if the node was live, False if it was already deleted.
        """
        node = self._nodes.get(node_id)
        if node is None:
            raise NotFoundError(node_id)
        if node.deleted:
            return False

        deleted = replace(node, deleted=True)
        self._nodes[node_id] = deleted
        log.debug("Soft-deleted %s", node_id)
        self._notify(ChangeKind.DELETED, deleted)
        return True

    def branch(self, parent_id: str, seed_content: str | None) -> GenerationNode:
        """Fork a pending child from ``parent_id`` seeded with ``seed_content``.

        The child copies type, mode, provider, model, prompt, vertical and
        context selection from the parent. The parent only gains a child id.
        """
        parent = self._nodes.get(parent_id)
        if parent is None:
            raise DanglingParentError(parent_id)
        if parent.deleted:
            raise DanglingParentError(parent_id, "deleted")

        node = GenerationNode.create(
            parent.node_type,
            parent.mode,
            provider=parent.provider,
            model=parent.model,
            parent_id=parent_id,
            content=seed_content,
            prompt=parent.prompt,
            vertical=parent.vertical,
            context_data=parent.context_data,
            created_at=self.now(),
        )
        return self.insert(node)

    def reorder_children(self, parent_id: str, order: list[str]) -> GenerationNode:
        """Replace a parent's display order with a permutation of its children."""
        parent = self._nodes.get(parent_id)
        if parent is None:
            raise NotFoundError(parent_id)
        if len(order) != len(parent.children) or set(order) != set(parent.children):
            raise ValueError(f"Order must be a permutation of the children of {parent_id}")

        reordered = replace(parent, children=tuple(order))
        self._nodes[parent_id] = reordered
        self._notify(ChangeKind.UPDATED, reordered)
        return reordered

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get(self, node_id: str, *, include_deleted: bool = False) -> GenerationNode | None:
        """Get a node by id.

        Args:
            node_id: Node identifier.
            include_deleted: Also return tombstones (to resolve a parent link).
        """
        node = self._nodes.get(node_id)
        if node is None or (node.deleted and not include_deleted):
            return None
        return node

    def roots(self) -> list[GenerationNode]:
        """Live parentless nodes in creation order."""
        return [n for n in self._nodes.values() if n.parent_id is None and not n.deleted]

    def children_of(self, node_id: str) -> list[GenerationNode]:
        """Live children in the parent's own ``children`` order.

        A tombstoned parent still lists its live children.
        """
        parent = self._nodes.get(node_id)
        if parent is None:
            return []
        return [
            child
            for cid in parent.children
            if (child := self._nodes.get(cid)) is not None and not child.deleted
        ]

    def ancestors(self, node_id: str) -> list[GenerationNode]:
        """Nodes from the parent up to the root, nearest first.

        Tombstoned ancestors are included: they still anchor the chain.
        """
        node = self._nodes.get(node_id)
        if node is None:
            raise NotFoundError(node_id)

        chain: list[GenerationNode] = []
        seen = {node_id}
        current = node
        while current.parent_id is not None and current.parent_id not in seen:
            parent = self._nodes.get(current.parent_id)
            if parent is None:
                break
            seen.add(parent.node_id)
            chain.append(parent)
            current = parent
        return chain

    def descendants(self, node_id: str) -> list[GenerationNode]:
        """Live descendants, depth first in display order."""
        result: list[GenerationNode] = []
        stack = list(reversed(self._nodes[node_id].children)) if node_id in self._nodes else []
        while stack:
            child = self._nodes.get(stack.pop())
            if child is None:
                continue
            if not child.deleted:
                result.append(child)
            stack.extend(reversed(child.children))
        return result

    def __len__(self) -> int:
        return sum(1 for n in self._nodes.values() if not n.deleted)

    def __contains__(self, node_id: str) -> bool:
        return self.get(node_id) is not None

    def __iter__(self) -> Iterator[GenerationNode]:
        return (n for n in list(self._nodes.values()) if not n.deleted)

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def subscribe(self, callback: Subscriber, key: str = ANY) -> Callable[[], None]:
        """Register ``callback`` for changes to ``key``.

        Args:
            callback: Called with a StoreEvent after each committed mutation.
            key: A node id (that node and its children), ROOTS, or ANY.

        Returns:
            A function that removes the subscription.
        """
        self._subscribers[key].append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(key)
            if callbacks and callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def _notify(self, kind: ChangeKind, node: GenerationNode) -> None:
        keys = [node.node_id, node.parent_id if node.parent_id else ROOTS, ANY]
        event = StoreEvent(kind=kind, node=node)

        delivered: list[Subscriber] = []
        for key in keys:
            for callback in list(self._subscribers.get(key, ())):
                if any(callback is d for d in delivered):
                    continue
                delivered.append(callback)
                try:
                    callback(event)
                except Exception:
                    log.warning(
                        "Subscriber %r failed on %s %s", callback, kind, node.node_id,
                        exc_info=True,
                    )

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialize every stored node, tombstones included."""
        return {"nodes": [node.to_dict() for node in self._nodes.values()]}

    @classmethod
    def from_dict(cls, data: dict[str, Any], **kwargs: Any) -> NodeStore:
        """Rebuild a store from ``to_dict()`` output without re-linking."""
        store = cls(**kwargs)
        for node_data in data.get("nodes", []):
            node = GenerationNode.from_dict(node_data)
            store._nodes[node.node_id] = node
        return store
