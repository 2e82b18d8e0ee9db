"""Implementation-level call graph.

Nodes are implementations, keyed by name. For every call site in an
implementation, one edge is added to each implementation realizing the
called procedure, so a procedure with several implementations fans out.
Self-loops and cycles are allowed; propagation only ever walks one hop.
"""

from __future__ import annotations

import logging
from collections import OrderedDict, defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional

from houdini.errors import SourceLocation
from houdini.lang.ast import Implementation, Program

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallEdge:
    caller: str
    callee: str
    procedure: str
    location: Optional[SourceLocation] = None


class CallGraph:
    """Directed graph over implementations.

    Attributes
    ----------
    nodes : OrderedDict[str, Implementation]
        All implementations, in program order.
    edges : list[CallEdge]
        One edge per call site per realization of the called procedure.
    """

    def __init__(self) -> None:
        self.nodes: "OrderedDict[str, Implementation]" = OrderedDict()
        self.edges: List[CallEdge] = []
        self._succ: Dict[str, List[str]] = defaultdict(list)
        self._pred: Dict[str, List[str]] = defaultdict(list)

    def add_node(self, impl: Implementation) -> None:
        self.nodes.setdefault(impl.name, impl)

    def add_edge(self, edge: CallEdge) -> None:
        self.edges.append(edge)
        if edge.callee not in self._succ[edge.caller]:
            self._succ[edge.caller].append(edge.callee)
        if edge.caller not in self._pred[edge.callee]:
            self._pred[edge.callee].append(edge.caller)

    def successors(self, name: str) -> List[Implementation]:
        """Direct callees of ``name``, each listed once."""
        return [self.nodes[n] for n in self._succ.get(name, [])]

    def predecessors(self, name: str) -> List[Implementation]:
        """Direct callers of ``name``, each listed once."""
        return [self.nodes[n] for n in self._pred.get(name, [])]

    def __contains__(self, name: str) -> bool:
        return name in self.nodes

    def to_dot(self, title: Optional[str] = None) -> str:
        """Return a Graphviz DOT representation."""
        lines = ["digraph CallGraph {"]
        lines.append("  rankdir=TB;")
        if title:
            lines.append(f'  label="{title}";')
        lines.append('  node [shape=box, fontname="Helvetica", fontsize=10];')
        for name, impl in self.nodes.items():
            escaped = name.replace('"', '\\"')
            label = escaped if impl.procedure == name else f"{escaped}\\n({impl.procedure})"
            lines.append(f'  "{escaped}" [label="{label}"];')
        for e in self.edges:
            caller = e.caller.replace('"', '\\"')
            callee = e.callee.replace('"', '\\"')
            elabel = f"{e.location.line}" if e.location else ""
            lines.append(f'  "{caller}" -> "{callee}" [label="{elabel}"];')
        lines.append("}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"CallGraph(nodes={len(self.nodes)}, edges={len(self.edges)})"


def build_call_graph(program: Program) -> CallGraph:
    cg = CallGraph()
    realizations: Dict[str, List[Implementation]] = defaultdict(list)
    for impl in program.implementations():
        cg.add_node(impl)
        realizations[impl.procedure].append(impl)

    for impl in program.implementations():
        for call in impl.call_sites():
            for callee in realizations.get(call.procedure, []):
                cg.add_edge(CallEdge(impl.name, callee.name, call.procedure, call.location))

    logger.debug("call graph: %r", cg)
    return cg
