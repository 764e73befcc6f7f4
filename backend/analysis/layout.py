"""Layered layout, critical path and hover focus for step graphs.

Steps are placed in rows by dependency depth (roots on row 0). Rows are
reordered with a two-pass barycenter sweep to reduce edge crossings, then
spread horizontally around x=0. Spacing adapts to the graph: wide rows get
tighter horizontal spacing, edge-dense graphs get more vertical room.

The critical path is the longest dependency chain. Every function here is
total: unknown dependency ids are ignored and an edge that would close a
cycle is skipped, so even an unrepaired graph gets a layout.
"""

from collections import defaultdict
from collections.abc import Callable, Sequence

from models.schemas import GraphLayout, LayoutEdge, LayoutNode, Step

# (max row width, horizontal spacing); wider graphs use WIDE_ROW_SPACING
HORIZONTAL_SPACING_TIERS = ((3, 280), (6, 220))
WIDE_ROW_SPACING = 180

# (max average dependencies per step, vertical spacing)
VERTICAL_SPACING_TIERS = ((1.0, 160), (2.0, 190))
DENSE_GRAPH_SPACING = 220


def _dependency_graph(steps: Sequence[Step]) -> dict[str, list[str]]:
    graph: dict[str, list[str]] = {}
    for step in steps:
        graph.setdefault(step.id, list(step.dependencies))
    return {
        step_id: [dep for dep in dict.fromkeys(deps) if dep in graph and dep != step_id]
        for step_id, deps in graph.items()
    }


def _dependency_order(graph: dict[str, list[str]]) -> list[str]:
    """Order step ids so every step follows its dependencies.

    Depth-first post-order over the dependency relation. A dependency that is
    still on the current path (a cycle) is not followed; the step that closes
    the cycle is emitted before it.
    """
    order: list[str] = []
    done: set[str] = set()
    for root in graph:
        if root in done:
            continue
        on_path = {root}
        stack = [(root, iter(graph[root]))]
        while stack:
            node, remaining = stack[-1]
            for dep in remaining:
                if dep in done or dep in on_path:
                    continue
                on_path.add(dep)
                stack.append((dep, iter(graph[dep])))
                break
            else:
                stack.pop()
                on_path.discard(node)
                done.add(node)
                order.append(node)
    return order


def assign_depths(steps: Sequence[Step]) -> dict[str, int]:
    """Depth of each step: 0 without dependencies, else 1 + deepest dependency."""
    graph = _dependency_graph(steps)
    depths: dict[str, int] = {}
    for step_id in _dependency_order(graph):
        known = [depths[dep] for dep in graph[step_id] if dep in depths]
        depths[step_id] = 1 + max(known) if known else 0
    return depths


def group_rows(steps: Sequence[Step], depths: dict[str, int]) -> list[list[str]]:
    """Group step ids into rows indexed by depth, keeping input order."""
    if not depths:
        return []
    rows: list[list[str]] = [[] for _ in range(max(depths.values()) + 1)]
    seen: set[str] = set()
    for step in steps:
        if step.id in seen:
            continue
        seen.add(step.id)
        rows[depths[step.id]].append(step.id)
    return rows


def _reorder_row(row: list[str], neighbor_positions: Callable[[str], list[int]]) -> list[str]:
    keyed: list[tuple[float, int, str]] = []
    for index, step_id in enumerate(row):
        positions = neighbor_positions(step_id)
        barycenter = sum(positions) / len(positions) if positions else float(index)
        keyed.append((barycenter, index, step_id))
    keyed.sort()
    return [step_id for _, _, step_id in keyed]


def minimize_crossings(
    rows: list[list[str]],
    graph: dict[str, list[str]],
) -> list[list[str]]:
    """Reorder rows with a top-down then bottom-up barycenter sweep.

    Top-down, each step in row d is keyed by the mean index of its
    dependencies in row d-1; row 0 keeps its order. Bottom-up, each step in
    row d is keyed by the mean index of its dependents in row d+1, or by its
    own index when it has none. Ties keep the current order.

    Args:
        rows: Step ids grouped by depth.
        graph: Dependency lists keyed by step id.

    Returns:
        New rows; the input is not modified.
    """
    rows = [list(row) for row in rows]
    dependents: dict[str, list[str]] = defaultdict(list)
    for step_id, deps in graph.items():
        for dep in deps:
            dependents[dep].append(step_id)

    for depth in range(1, len(rows)):
        above = {step_id: index for index, step_id in enumerate(rows[depth - 1])}
        rows[depth] = _reorder_row(
            rows[depth],
            lambda step_id: [above[dep] for dep in graph.get(step_id, []) if dep in above],
        )

    for depth in range(len(rows) - 2, -1, -1):
        below = {step_id: index for index, step_id in enumerate(rows[depth + 1])}
        rows[depth] = _reorder_row(
            rows[depth],
            lambda step_id: [below[child] for child in dependents[step_id] if child in below],
        )

    return rows


def compute_spacing(rows: list[list[str]], edge_count: int, step_count: int) -> tuple[int, int]:
    """Pick (horizontal, vertical) spacing for the graph's shape."""
    widest = max((len(row) for row in rows), default=0)
    horizontal = WIDE_ROW_SPACING
    for max_width, spacing in HORIZONTAL_SPACING_TIERS:
        if widest <= max_width:
            horizontal = spacing
            break

    average_dependencies = edge_count / step_count if step_count else 0.0
    vertical = DENSE_GRAPH_SPACING
    for max_average, spacing in VERTICAL_SPACING_TIERS:
        if average_dependencies <= max_average:
            vertical = spacing
            break

    return horizontal, vertical


def compute_critical_path(steps: Sequence[Step]) -> list[str]:
    """Return the longest dependency chain, from root to terminus.

    Chain length is 1 for a step without dependencies, otherwise 1 + the
    longest chain among its dependencies; the first dependency reaching that
    maximum is the step's predecessor. The terminus is the step with the
    longest chain (earliest in input order on ties).
    """
    graph = _dependency_graph(steps)
    lengths: dict[str, int] = {}
    predecessor: dict[str, str | None] = {}
    for step_id in _dependency_order(graph):
        best, best_dep = 1, None
        for dep in graph[step_id]:
            if dep in lengths and lengths[dep] + 1 > best:
                best, best_dep = lengths[dep] + 1, dep
        lengths[step_id] = best
        predecessor[step_id] = best_dep

    terminus: str | None = None
    for step_id in graph:
        if terminus is None or lengths[step_id] > lengths[terminus]:
            terminus = step_id

    path: list[str] = []
    node = terminus
    while node is not None:
        path.append(node)
        node = predecessor[node]
    path.reverse()
    return path


def compute_focus_set(steps: Sequence[Step], hovered_step_id: str | None) -> set[str] | None:
    """Steps to keep highlighted while ``hovered_step_id`` is hovered.

    The hovered step, its direct dependencies, and the steps that directly
    depend on it. Returns None when nothing (or an unknown id) is hovered.
    """
    graph = _dependency_graph(steps)
    if hovered_step_id is None or hovered_step_id not in graph:
        return None

    focus = {hovered_step_id, *graph[hovered_step_id]}
    focus.update(step_id for step_id, deps in graph.items() if hovered_step_id in deps)
    return focus


def compute_layout(steps: Sequence[Step], hovered_step_id: str | None = None) -> GraphLayout:
    """Lay out a step graph for display.

    Args:
        steps: Repaired steps.
        hovered_step_id: Step under the pointer, if any; everything outside
            its neighborhood is flagged dimmed.

    Returns:
        GraphLayout with one node per step, one edge per dependency, and the
        critical path. Empty input gives an empty layout.
    """
    if not steps:
        return GraphLayout()

    graph = _dependency_graph(steps)
    depths = assign_depths(steps)
    rows = minimize_crossings(group_rows(steps, depths), graph)
    edge_count = sum(len(deps) for deps in graph.values())
    horizontal, vertical = compute_spacing(rows, edge_count, len(graph))

    positions: dict[str, tuple[float, float, int]] = {}
    for depth, row in enumerate(rows):
        start_x = -(len(row) - 1) * horizontal / 2
        for order, step_id in enumerate(row):
            positions[step_id] = (start_x + order * horizontal, float(depth * vertical), order)

    critical_path = compute_critical_path(steps)
    critical = set(critical_path)
    focus = compute_focus_set(steps, hovered_step_id)

    def is_dimmed(*step_ids: str) -> bool:
        return focus is not None and not all(step_id in focus for step_id in step_ids)

    nodes = [
        LayoutNode(
            id=step_id,
            x=positions[step_id][0],
            y=positions[step_id][1],
            depth=depths[step_id],
            order=positions[step_id][2],
            critical=step_id in critical,
            dimmed=is_dimmed(step_id),
        )
        for step_id in graph
    ]
    edges = [
        LayoutEdge(
            id=f"{dep}-{step_id}",
            source=dep,
            target=step_id,
            critical=dep in critical and step_id in critical,
            dimmed=is_dimmed(dep, step_id),
        )
        for step_id, deps in graph.items()
        for dep in deps
    ]

    return GraphLayout(
        nodes=nodes,
        edges=edges,
        critical_path=critical_path,
        horizontal_spacing=horizontal,
        vertical_spacing=vertical,
    )
