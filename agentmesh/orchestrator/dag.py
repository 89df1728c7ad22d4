"""Dependency graph of workflow phases.

Provides:
- Structural checks (duplicate phases, dangling dependencies)
- Cycle detection (DFS), reporting the nodes on the cycle
- Topological ordering and execution waves (Kahn's algorithm)
- Downstream lookup used to cascade failures
"""

from collections import deque
from dataclasses import dataclass

from ..errors import CycleDetected, WorkflowDefinitionError
from ..models import WorkflowDefinition


@dataclass(frozen=True)
class DependencyGraph:
    """Immutable, acyclic graph. Build it with ``build_graph``."""

    order: tuple[str, ...]  # topological, ties broken by declaration order
    dependencies: dict[str, frozenset[str]]  # node -> nodes it waits for
    dependents: dict[str, frozenset[str]]  # node -> nodes waiting for it

    def dependencies_of(self, name: str) -> frozenset[str]:
        return self.dependencies[name]

    def dependents_of(self, name: str) -> frozenset[str]:
        return self.dependents[name]

    def descendants(self, name: str) -> set[str]:
        """Every node reachable downstream of name (BFS)."""
        seen: set[str] = set()
        queue = deque(self.dependents[name])
        while queue:
            node = queue.popleft()
            if node in seen:
                continue
            seen.add(node)
            queue.extend(self.dependents[node] - seen)
        return seen

    def waves(self) -> list[list[str]]:
        """Groups of nodes whose dependencies are all in earlier groups."""
        position = {name: i for i, name in enumerate(self.order)}
        remaining = {name: len(deps) for name, deps in self.dependencies.items()}
        wave = [name for name in self.order if remaining[name] == 0]
        waves = []
        while wave:
            waves.append(wave)
            nxt = []
            for name in wave:
                for child in self.dependents[name]:
                    remaining[child] -= 1
                    if remaining[child] == 0:
                        nxt.append(child)
            wave = sorted(nxt, key=position.__getitem__)
        return waves


def _find_cycle(names: list[str], dependencies: dict[str, set[str]]) -> list[str] | None:
    """Return one cycle as [a, b, ..., a], or None."""
    WHITE, GREY, BLACK = 0, 1, 2
    colour = dict.fromkeys(names, WHITE)
    stack: list[str] = []

    def visit(node: str) -> list[str] | None:
        colour[node] = GREY
        stack.append(node)
        for dep in sorted(dependencies[node]):
            if colour[dep] == GREY:
                return stack[stack.index(dep):] + [dep]
            if colour[dep] == WHITE:
                cycle = visit(dep)
                if cycle:
                    return cycle
        stack.pop()
        colour[node] = BLACK
        return None

    for name in names:
        if colour[name] == WHITE:
            cycle = visit(name)
            if cycle:
                # Report in execution direction: dependency before dependent
                return list(reversed(cycle))
    return None


def build_graph(definition: WorkflowDefinition) -> DependencyGraph:
    """Validate a definition and build its graph.

    Raises:
        WorkflowDefinitionError: on duplicate phase names or dependencies
            that reference undeclared phases
        CycleDetected: if the dependencies contain a cycle
    """
    names = [phase.name for phase in definition.phases]
    seen: set[str] = set()
    for name in names:
        if name in seen:
            raise WorkflowDefinitionError(f"duplicate phase name {name!r}")
        seen.add(name)

    dependencies: dict[str, set[str]] = {name: set() for name in names}
    dependents: dict[str, set[str]] = {name: set() for name in names}
    for upstream, downstream in definition.dependencies:
        for name in (upstream, downstream):
            if name not in dependencies:
                raise WorkflowDefinitionError(
                    f"dependency references unknown phase {name!r}"
                )
        if upstream == downstream:
            raise CycleDetected([upstream, upstream])
        dependencies[downstream].add(upstream)
        dependents[upstream].add(downstream)

    cycle = _find_cycle(names, dependencies)
    if cycle:
        raise CycleDetected(cycle)

    # Kahn, ties broken by declaration order
    position = {name: i for i, name in enumerate(names)}
    in_degree = {name: len(deps) for name, deps in dependencies.items()}
    ready = [name for name in names if in_degree[name] == 0]
    order: list[str] = []
    while ready:
        ready.sort(key=position.__getitem__)
        name = ready.pop(0)
        order.append(name)
        for child in dependents[name]:
            in_degree[child] -= 1
            if in_degree[child] == 0:
                ready.append(child)

    return DependencyGraph(
        order=tuple(order),
        dependencies={name: frozenset(deps) for name, deps in dependencies.items()},
        dependents={name: frozenset(deps) for name, deps in dependents.items()},
    )
