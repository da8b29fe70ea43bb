"""Plan tree traversal, text rendering and the recommendation engine."""

from typing import Callable, Optional

from sql_whisperer_mcp.models.plan import (
    JoinStrategy,
    PlanNode,
    PlanNodeKind,
    PlanRecommendation,
)


class PlanVisitor:
    """Pre-order walk over a plan tree.

    Subclasses override ``visit_node``; per-kind hooks named
    ``visit_<kind>`` are called first when defined.
    """

    def visit(self, root: PlanNode) -> None:
        self._visit(root, 0)

    def _visit(self, node: PlanNode, depth: int) -> None:
        hook = getattr(self, f"visit_{node.kind.value}", None)
        if hook is not None:
            hook(node, depth)
        self.visit_node(node, depth)
        for child in node.children:
            self._visit(child, depth + 1)

    def visit_node(self, node: PlanNode, depth: int) -> None:
        pass


class PlanFormatter(PlanVisitor):
    """Render a plan tree as indented text."""

    def format(self, root: PlanNode) -> str:
        self._lines: list[str] = []
        self.visit(root)
        return "\n".join(self._lines)

    def visit_node(self, node: PlanNode, depth: int) -> None:
        prefix = "  " * depth
        arrow = "-> " if depth else ""

        label = node.node_type
        if node.relation:
            label += f" on {node.relation}"
        if node.alias and node.alias != node.relation:
            label += f" (alias: {node.alias})"
        if node.index_name:
            label += f" using {node.index_name}"
        self._lines.append(f"{prefix}{arrow}{label}")

        details = []
        if node.total_cost is not None:
            details.append(f"cost={node.startup_cost or 0:.2f}..{node.total_cost:.2f}")
        if node.estimated_rows is not None:
            details.append(f"rows={node.estimated_rows:g}")
        if details:
            self._lines.append(f"{prefix}   ({' '.join(details)})")

        if node.actual_time_ms is not None or node.actual_rows is not None:
            actual = []
            if node.actual_time_ms is not None:
                actual.append(f"time={node.actual_time_ms:.3f}")
            if node.actual_rows is not None:
                actual.append(f"rows={node.actual_rows:g}")
            if node.loops is not None:
                actual.append(f"loops={node.loops}")
            self._lines.append(f"{prefix}   (actual {' '.join(actual)})")

        if node.index_condition:
            self._lines.append(f"{prefix}   Index Cond: {node.index_condition}")
        if node.filter:
            self._lines.append(f"{prefix}   Filter: {node.filter}")
        if node.sort_keys:
            self._lines.append(f"{prefix}   Sort Key: {', '.join(node.sort_keys)}")


def _analyze_command(relation: Optional[str]) -> str:
    return f"ANALYZE {relation}" if relation else "ANALYZE"


class PlanAdvisor(PlanVisitor):
    """Recommendation engine shared by all adapters.

    Rules are applied to every node in pre-order; a rule that matches
    several nodes yields one recommendation per node.

    Args:
        seq_scan_threshold: Estimated rows above which a full scan is flagged
        join_row_threshold: Rows above which the costly join strategy is flagged
        costly_join: Join strategy considered expensive at high row counts
        misestimate_ratio: Estimated/actual divergence that signals stale statistics
        statistics_command: Builds the engine's refresh-statistics statement
    """

    def __init__(
        self,
        seq_scan_threshold: int = 1000,
        join_row_threshold: int = 10000,
        costly_join: JoinStrategy = JoinStrategy.NESTED_LOOP,
        misestimate_ratio: float = 10.0,
        misestimate_min_rows: int = 100,
        statistics_command: Callable[[Optional[str]], str] = _analyze_command,
    ):
        self.seq_scan_threshold = seq_scan_threshold
        self.join_row_threshold = join_row_threshold
        self.costly_join = costly_join
        self.misestimate_ratio = misestimate_ratio
        self.misestimate_min_rows = misestimate_min_rows
        self.statistics_command = statistics_command

    def advise(self, root: PlanNode) -> list[PlanRecommendation]:
        self._found: list[PlanRecommendation] = []
        self.visit(root)
        return self._found

    def _add(self, node: PlanNode, code: str, message: str) -> None:
        self._found.append(
            PlanRecommendation(
                code=code, message=message, node_type=node.node_type, relation=node.relation
            )
        )

    def visit_scan(self, node: PlanNode, depth: int) -> None:
        if node.estimated_rows is None or node.estimated_rows > self.seq_scan_threshold:
            target = node.relation or "the scanned table"
            rows = (
                f"~{node.estimated_rows:g} rows"
                if node.estimated_rows is not None
                else "an unknown number of rows"
            )
            self._add(
                node,
                "FULL_TABLE_SCAN",
                f"Full table scan on {target} reading {rows}. "
                f"Consider adding an index on the filtered or joined columns.",
            )

    def visit_join(self, node: PlanNode, depth: int) -> None:
        if node.join_strategy != self.costly_join:
            return
        rows = max(node.estimated_rows or 0, node.actual_rows or 0)
        if rows > self.join_row_threshold:
            self._add(
                node,
                "COSTLY_JOIN",
                f"{node.node_type} processes ~{rows:g} rows. Consider an index on the "
                f"join columns or a hash/merge join strategy.",
            )

    def visit_node(self, node: PlanNode, depth: int) -> None:
        if node.kind == PlanNodeKind.SORT or node.uses_temporary:
            keys = f" ({', '.join(node.sort_keys)})" if node.sort_keys else ""
            self._add(
                node,
                "UNINDEXED_SORT",
                f"{node.node_type} sorts or groups rows in a temporary structure{keys}. "
                f"Consider an index matching the ORDER BY / GROUP BY columns.",
            )

        if node.actual_rows is not None and node.estimated_rows is not None:
            high = max(node.actual_rows, node.estimated_rows)
            low = max(min(node.actual_rows, node.estimated_rows), 1)
            if high >= self.misestimate_min_rows and high / low >= self.misestimate_ratio:
                self._add(
                    node,
                    "STALE_STATISTICS",
                    f"Planner estimated {node.estimated_rows:g} rows but {node.node_type} "
                    f"produced {node.actual_rows:g}. Refresh statistics with "
                    f"'{self.statistics_command(node.relation)}'.",
                )
