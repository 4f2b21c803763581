from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]

_UNSET = object()


@dataclass
class _Node:
    name: str
    deps: Tuple[str, ...] = ()
    fn: Optional[Callable[..., Any]] = None
    value: Any = _UNSET
    version: int = 0
    seen_dep_versions: Tuple[int, ...] = ()
    listeners: List[Listener] = field(default_factory=list)

    @property
    def is_atom(self) -> bool:
        return self.fn is None


class Store:
    """
    Arena of named atoms and derived values.

    Derived nodes may only depend on nodes registered before them, so
    registration order is a topological order of the graph. Each node keeps a
    version counter that moves only when its value changes; a derived node is
    recomputed on read when any dependency version differs from the versions
    it last saw.
    """
    def __init__(self):
        self._nodes: Dict[str, _Node] = {}
        self._order: List[str] = []
        self._dependents: Dict[str, List[str]] = {}
        self.recompute_count: Dict[str, int] = {}

    def _node(self, name: str) -> _Node:
        if name not in self._nodes:
            raise KeyError(f"Unknown node: {name}")
        return self._nodes[name]

    def _register(self, node: _Node) -> None:
        if node.name in self._nodes:
            raise ValueError(f"Node '{node.name}' is already registered")
        for dep in node.deps:
            self._node(dep)
        self._nodes[node.name] = node
        self._order.append(node.name)
        self._dependents[node.name] = []
        for dep in node.deps:
            self._dependents[dep].append(node.name)
        self.recompute_count[node.name] = 0

    def atom(self, name: str, value: Any) -> str:
        self._register(_Node(name=name, value=value, version=1))
        return name

    def computed(self, name: str, deps: Tuple[str, ...], fn: Callable[..., Any]) -> str:
        self._register(_Node(name=name, deps=tuple(deps), fn=fn))
        return name

    @property
    def names(self) -> List[str]:
        return list(self._order)

    def version(self, name: str) -> int:
        node = self._node(name)
        if not node.is_atom:
            self._refresh(node)
        return node.version

    def get(self, name: str) -> Any:
        node = self._node(name)
        if not node.is_atom:
            self._refresh(node)
        return node.value

    def _refresh(self, node: _Node) -> None:
        dep_values = []
        dep_versions = []
        for dep in node.deps:
            dep_node = self._nodes[dep]
            if not dep_node.is_atom:
                self._refresh(dep_node)
            dep_values.append(dep_node.value)
            dep_versions.append(dep_node.version)
        dep_versions = tuple(dep_versions)
        if node.value is not _UNSET and dep_versions == node.seen_dep_versions:
            return
        value = node.fn(*dep_values)
        self.recompute_count[node.name] += 1
        node.seen_dep_versions = dep_versions
        if node.value is _UNSET or value != node.value:
            node.value = value
            node.version += 1

    def set(self, name: str, value: Any) -> bool:
        node = self._node(name)
        if not node.is_atom:
            raise TypeError(f"'{name}' is derived and cannot be set")
        if value == node.value:
            return False
        node.value = value
        node.version += 1
        self._notify([name])
        return True

    def update(self, values: Dict[str, Any]) -> List[str]:
        """Set several atoms, notifying once after all of them have moved."""
        changed = []
        for name, value in values.items():
            node = self._node(name)
            if not node.is_atom:
                raise TypeError(f"'{name}' is derived and cannot be set")
            if value != node.value:
                node.value = value
                node.version += 1
                changed.append(name)
        if changed:
            self._notify(changed)
        return changed

    def dependents(self, names: List[str]) -> List[str]:
        """Transitive dependents of the given nodes, in topological order."""
        reached = set()
        stack = list(names)
        while stack:
            current = stack.pop()
            for child in self._dependents[current]:
                if child not in reached:
                    reached.add(child)
                    stack.append(child)
        return [name for name in self._order if name in reached]

    def subscribe(self, name: str, listener: Listener) -> Callable[[], None]:
        node = self._node(name)
        node.listeners.append(listener)

        def unsubscribe() -> None:
            if listener in node.listeners:
                node.listeners.remove(listener)

        return unsubscribe

    def _notify(self, changed_atoms: List[str]) -> None:
        for name in changed_atoms:
            node = self._nodes[name]
            for listener in list(node.listeners):
                listener(node.value)
        for name in self.dependents(changed_atoms):
            node = self._nodes[name]
            if not node.listeners:
                continue
            before = node.version
            self._refresh(node)
            if node.version != before:
                logger.debug("notify %s (v%d)", name, node.version)
                for listener in list(node.listeners):
                    listener(node.value)


__all__ = ["Store"]
