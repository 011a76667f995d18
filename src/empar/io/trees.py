"""
Phylogenetic tree parsing and fixed-topology representation.

Nodes are numbered so that leaves are ``0..n_leaves-1`` (in Newick order),
the root is ``n_leaves`` and the remaining internal nodes follow in preorder.
Every edge is directed away from the root and its position in ``Tree.edges``
is the index used to address per-edge parameters.
"""

import re
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence


@dataclass
class TreeNode:
    """
    Phylogenetic tree node.

    Attributes
    ----------
    id : int
        Node index
    name : Optional[str]
        Node name (for leaves)
    parent : Optional[TreeNode]
        Parent node
    children : list[TreeNode]
        Child nodes
    branch_length : float
        Branch length to parent as read from the input
    """

    id: int
    name: Optional[str] = None
    parent: Optional["TreeNode"] = field(default=None, repr=False, compare=False)
    children: list["TreeNode"] = field(default_factory=list)
    branch_length: float = 0.0

    @property
    def is_leaf(self) -> bool:
        """Check if node is a leaf."""
        return len(self.children) == 0


@dataclass
class Tree:
    """
    Rooted phylogenetic tree with a fixed topology.

    Attributes
    ----------
    root : TreeNode
        Root node of the tree (always an internal node)
    n_nodes : int
        Total number of nodes
    n_leaves : int
        Number of leaf nodes
    leaf_names : list[str]
        Names of leaf nodes, indexed by leaf id
    nalpha : int
        Alphabet size of the model used with this tree
    edges : list[tuple[int, int]]
        ``(source, target)`` node ids, source being the end closer to the
        root. Defaults to preorder.
    """

    root: TreeNode
    n_nodes: int
    n_leaves: int
    leaf_names: list[str]
    nalpha: int = 4
    edges: Optional[list[tuple[int, int]]] = None
    nodes: list[TreeNode] = field(init=False, repr=False)

    def __post_init__(self):
        if self.nalpha < 2:
            raise ValueError(f"Alphabet size must be at least 2, got {self.nalpha}")
        if self.root.is_leaf:
            raise ValueError("The root must be an internal node")

        nodes = self.preorder()
        if len(nodes) != self.n_nodes:
            raise ValueError(
                f"Tree has {len(nodes)} reachable nodes, expected {self.n_nodes}"
            )
        if sorted(node.id for node in nodes) != list(range(self.n_nodes)):
            raise ValueError("Node ids must be 0..n_nodes-1 without repeats")

        self.nodes = sorted(nodes, key=lambda node: node.id)
        for node in self.nodes:
            if node.is_leaf != (node.id < self.n_leaves):
                raise ValueError(
                    f"Node {node.id}: leaves must be exactly the nodes 0..{self.n_leaves - 1}"
                )

        preorder_edges = [(node.parent.id, node.id) for node in nodes if node.parent is not None]
        if self.edges is None:
            self.edges = preorder_edges
        else:
            self.edges = [tuple(edge) for edge in self.edges]
            if sorted(self.edges) != sorted(preorder_edges):
                raise ValueError("Edge list does not match the tree structure")

        self._parent_edge = {target: i for i, (_, target) in enumerate(self.edges)}
        self._child_edges = {node.id: [] for node in self.nodes}
        for i, (source, _) in enumerate(self.edges):
            self._child_edges[source].append(i)

    @property
    def n_edges(self) -> int:
        return len(self.edges)

    @property
    def root_id(self) -> int:
        return self.root.id

    @property
    def hidden_nodes(self) -> list[int]:
        """Ids of the unobserved (non-leaf) nodes, root included."""
        return [node.id for node in self.nodes if not node.is_leaf]

    @classmethod
    def from_newick(cls, newick_string: str, nalpha: int = 4) -> "Tree":
        """
        Parse Newick format tree string.

        Parameters
        ----------
        newick_string : str
            Newick format tree
        nalpha : int
            Alphabet size of the model the tree will be used with

        Returns
        -------
        Tree
            Parsed tree

        Examples
        --------
        >>> tree = Tree.from_newick("(A:0.1,B:0.2,(C:0.3,D:0.4):0.05);")
        >>> tree.n_leaves, tree.root_id, tree.n_edges
        (4, 4, 5)
        """
        # Remove // and /* */ comments
        newick = re.sub(r'//.*', '', newick_string)
        newick = re.sub(r'/\s*\*.*?\*\s*/', '', newick, flags=re.DOTALL)
        newick = newick.strip()

        if ';' not in newick:
            raise ValueError("Invalid Newick format: missing semicolon")

        tree_lines = []
        for line in newick.split('\n'):
            # Skip PHYLIP-style headers (just numbers)
            if line.strip() and not re.match(r'^\s*\d+\s+\d+\s*$', line):
                tree_lines.append(line)
                if ';' in line:
                    break

        if not tree_lines:
            raise ValueError("Invalid Newick format: no tree found")

        tree_line = ''.join(tree_lines)
        tree_line = tree_line.replace('\t', '').replace('\r', '')
        tree_line = tree_line[:tree_line.index(';')]

        def skip_whitespace(s: str, pos: int) -> int:
            while pos < len(s) and s[pos] in ' \n':
                pos += 1
            return pos

        def parse_node(s: str, start: int, parent: Optional[TreeNode] = None) -> tuple[TreeNode, int]:
            """Parse a node from position start in string s."""
            node = TreeNode(id=-1, parent=parent)
            pos = skip_whitespace(s, start)

            if pos < len(s) and s[pos] == '(':
                pos = skip_whitespace(s, pos + 1)
                while True:
                    child, pos = parse_node(s, pos, node)
                    node.children.append(child)
                    pos = skip_whitespace(s, pos)

                    if pos < len(s) and s[pos] == ',':
                        pos = skip_whitespace(s, pos + 1)
                        continue
                    elif pos < len(s) and s[pos] == ')':
                        pos = skip_whitespace(s, pos + 1)
                        break
                    else:
                        raise ValueError(f"Expected ',' or ')' at position {pos}")

            name_start = pos
            while pos < len(s) and s[pos] not in ',:(); \n':
                pos += 1
            if pos > name_start:
                node.name = s[name_start:pos]

            pos = skip_whitespace(s, pos)

            if pos < len(s) and s[pos] == ':':
                pos = skip_whitespace(s, pos + 1)
                length_start = pos
                while pos < len(s) and s[pos] not in ',(); \n':
                    pos += 1
                try:
                    node.branch_length = float(s[length_start:pos])
                except ValueError:
                    raise ValueError(f"Invalid branch length: {s[length_start:pos]}")

            return node, pos

        root, pos = parse_node(tree_line, 0, None)
        if skip_whitespace(tree_line, pos) != len(tree_line):
            raise ValueError(f"Unexpected characters after position {pos}")

        leaves = []
        internal = []
        stack = [root]
        while stack:
            node = stack.pop()
            if node.is_leaf:
                leaves.append(node)
            elif node is not root:
                internal.append(node)
            stack.extend(reversed(node.children))

        for i, leaf in enumerate(leaves):
            leaf.id = i
        root.id = len(leaves)
        for i, node in enumerate(internal):
            node.id = len(leaves) + 1 + i

        leaf_names = [leaf.name if leaf.name else str(leaf.id) for leaf in leaves]
        if len(set(leaf_names)) != len(leaf_names):
            raise ValueError("Leaf names must be unique")

        return cls(
            root=root,
            n_nodes=len(leaves) + len(internal) + 1,
            n_leaves=len(leaves),
            leaf_names=leaf_names,
            nalpha=nalpha,
        )

    @classmethod
    def from_file(cls, filepath: Path | str, nalpha: int = 4) -> "Tree":
        """Read a Newick tree from a file."""
        with open(filepath, 'r') as f:
            return cls.from_newick(f.read(), nalpha=nalpha)

    @classmethod
    def from_edges(
        cls,
        n_leaves: int,
        edges: Sequence[tuple[int, int]],
        nalpha: int = 4,
        root: Optional[int] = None,
        leaf_names: Optional[list[str]] = None,
    ) -> "Tree":
        """
        Build a tree from an undirected edge list.

        Parameters
        ----------
        n_leaves : int
            Number of leaves; leaves are the nodes ``0..n_leaves-1``
        edges : sequence of (int, int)
            Undirected edges between node ids. Edge ``i`` of the result is
            ``edges[i]`` oriented away from the root.
        nalpha : int
            Alphabet size
        root : int, optional
            Root node id (default ``n_leaves``)
        leaf_names : list[str], optional
            Leaf names (default ``"0"``, ``"1"``, ...)

        Examples
        --------
        >>> star = Tree.from_edges(3, [(3, 0), (3, 1), (3, 2)], nalpha=2)
        >>> star.valence(3)
        3
        """
        if root is None:
            root = n_leaves
        n_nodes = len(edges) + 1

        adjacency = {i: [] for i in range(n_nodes)}
        for a, b in edges:
            if a not in adjacency or b not in adjacency:
                raise ValueError(f"Edge ({a}, {b}) refers to a node outside 0..{n_nodes - 1}")
            adjacency[a].append(b)
            adjacency[b].append(a)
        if root not in adjacency:
            raise ValueError(f"Root {root} is not a node of the tree")

        nodes = {i: TreeNode(id=i) for i in range(n_nodes)}
        if leaf_names is None:
            leaf_names = [str(i) for i in range(n_leaves)]
        for i, name in enumerate(leaf_names):
            nodes[i].name = name

        seen = {root}
        queue = deque([root])
        while queue:
            current = queue.popleft()
            for neighbour in sorted(adjacency[current]):
                if neighbour in seen:
                    if nodes[current].parent is None or neighbour != nodes[current].parent.id:
                        raise ValueError("Edge list contains a cycle")
                    continue
                seen.add(neighbour)
                nodes[neighbour].parent = nodes[current]
                nodes[current].children.append(nodes[neighbour])
                queue.append(neighbour)

        if len(seen) != n_nodes:
            raise ValueError("Edge list does not describe a connected tree")

        oriented = []
        for a, b in edges:
            oriented.append((a, b) if nodes[b].parent is nodes[a] else (b, a))

        return cls(
            root=nodes[root],
            n_nodes=n_nodes,
            n_leaves=n_leaves,
            leaf_names=list(leaf_names),
            nalpha=nalpha,
            edges=oriented,
        )

    def valence(self, node: int) -> int:
        """Number of edges incident to ``node``."""
        return len(self.children(node)) + (self.parent_edge(node) is not None)

    def parent_edge(self, node: int) -> Optional[int]:
        """Index of the edge ending at ``node`` (None for the root)."""
        return self._parent_edge.get(node)

    def children(self, node: int) -> list[int]:
        """Ids of the children of ``node``."""
        return [self.edges[e][1] for e in self._child_edges[node]]

    def child_edges(self, node: int) -> list[int]:
        """Indices of the edges leaving ``node``."""
        return self._child_edges[node]

    def postorder(self) -> list[TreeNode]:
        """
        Return nodes in post-order traversal (leaves to root).

        Returns
        -------
        list[TreeNode]
            Nodes in post-order
        """
        result = []
        stack = [(self.root, False)]
        while stack:
            node, expanded = stack.pop()
            if expanded:
                result.append(node)
                continue
            stack.append((node, True))
            for child in reversed(node.children):
                stack.append((child, False))
        return result

    def preorder(self) -> list[TreeNode]:
        """Return nodes in pre-order traversal (root to leaves)."""
        result = []
        stack = [self.root]
        while stack:
            node = stack.pop()
            result.append(node)
            stack.extend(reversed(node.children))
        return result

    def edge_preorder(self) -> list[int]:
        """Edge indices ordered so that every edge precedes the edges below it."""
        return [self._parent_edge[node.id] for node in self.preorder() if node.parent is not None]

    def to_newick(self, branch_lengths: Optional[Sequence[float]] = None, precision: int = 6) -> str:
        """
        Serialize the tree to Newick.

        Parameters
        ----------
        branch_lengths : sequence of float, optional
            One length per edge index. Defaults to the lengths read from the input.
        precision : int
            Decimal places for branch lengths

        Returns
        -------
        str
            Newick string terminated by ';'
        """
        if branch_lengths is not None and len(branch_lengths) != self.n_edges:
            raise ValueError(
                f"Expected {self.n_edges} branch lengths, got {len(branch_lengths)}"
            )

        def render(node: TreeNode) -> str:
            if node.is_leaf:
                text = self.leaf_names[node.id]
            else:
                text = "(" + ",".join(render(child) for child in node.children) + ")"
            if node.parent is not None:
                if branch_lengths is None:
                    length = node.branch_length
                else:
                    length = branch_lengths[self._parent_edge[node.id]]
                text += f":{length:.{precision}f}"
            return text

        return render(self.root) + ";"

    def describe(self) -> str:
        """Multi-line description of nodes and edges for reports."""
        lines = [
            f"Leaves: {self.n_leaves}  Nodes: {self.n_nodes}  Root: {self.root_id}  Alphabet: {self.nalpha}"
        ]
        for i, name in enumerate(self.leaf_names):
            lines.append(f"  leaf {i}: {name}")
        for i, (source, target) in enumerate(self.edges):
            lines.append(f"  edge {i}: {source} -> {target}")
        return "\n".join(lines)
