import rustworkx as rx
from .errors import GraphCycleError


class AutogradGraph:
    """
    Index-based view of the computation graph reachable from one root.
    Nodes are TrackedValues, and each tracked operand slot of a Call record
    becomes one edge operand -> consumer, so ``x * x`` contributes two edges.
    """
    __slots__ = ('graph', 'index_of', 'root_index', '__weakref__')

    def __init__(self):
        self.graph = rx.PyDiGraph(multigraph=True)
        self.index_of = {}
        self.root_index = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.clear()

    @classmethod
    def from_root(cls, root):
        self = cls()
        self.root_index = self.add_tensor_graph(root)
        stack = [root]
        while stack:
            node = stack.pop()
            if node.origin is None:
                continue
            node_id = self.index_of[id(node)]
            for operand in node.origin.tracked_operands():
                seen = id(operand) in self.index_of
                operand_id = self.add_tensor_graph(operand)
                self.add_edge(operand_id, node_id)
                if not seen:
                    stack.append(operand)
        return self

    def add_tensor_graph(self, tv):
        key = id(tv)
        if key not in self.index_of:
            self.index_of[key] = self.graph.add_node(tv)
        return self.index_of[key]

    def add_edge(self, node_from, node_to, weight=None):
        if not all(isinstance(n, int) for n in (node_from, node_to)):
            raise TypeError("Node indices must be integers.")
        if not self.graph.has_node(node_from) or not self.graph.has_node(node_to):
            raise ValueError("Nodes must exist before adding edge.")
        self.graph.add_edge(node_from, node_to, weight)

    def check_cycle(self):
        return not rx.is_directed_acyclic_graph(self.graph)

    def raise_on_cycle(self):
        if self.check_cycle():
            raise GraphCycleError("Cycle detected in autograd graph.")

    def consumer_count(self, node_index):
        """Number of consumer edges pointing out of a node inside this subgraph."""
        return self.graph.out_degree(node_index)

    def node(self, node_index):
        return self.graph[node_index]

    def nodes(self):
        return self.graph.nodes()

    def node_indices(self):
        return list(self.graph.node_indices())

    def reverse_toposort(self):
        return [self.graph[i] for i in reversed(rx.topological_sort(self.graph))]

    def clear(self):
        self.graph.clear()
        self.index_of.clear()
        self.root_index = None

    def __len__(self):
        return self.graph.num_nodes()

    def __repr__(self):
        return f"AutogradGraph(nodes={self.graph.num_nodes()}, edges={self.graph.num_edges()})"
