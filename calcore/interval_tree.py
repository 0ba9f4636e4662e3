"""
AVL-balanced interval tree.

Each node stores one interval plus the largest end in its subtree, so
intersection queries skip every subtree that ends before the query starts.
Coordinates only need to be totally ordered (datetimes in practice).
"""

from typing import Any, Generic, Optional, TypeVar

T = TypeVar('T')


class IntervalNode(Generic[T]):
    """A stored interval with public start, end and data."""
    __slots__ = ['start', 'end', 'data', 'left', 'right', 'parent', 'max_end', 'height']

    def __init__(self, start: T, end: T, data: Any):
        self.start: T = start
        self.end: T = end
        self.data: Any = data
        self.left: Optional['IntervalNode[T]'] = None
        self.right: Optional['IntervalNode[T]'] = None
        self.parent: Optional['IntervalNode[T]'] = None
        self.max_end: T = end
        self.height: int = 1


class IntervalTree(Generic[T]):
    def __init__(self):
        self.root: Optional[IntervalNode[T]] = None
        self._size = 0

    def __len__(self) -> int:
        return self._size

    # --- Balancing ---

    @staticmethod
    def _height(node: Optional[IntervalNode[T]]) -> int:
        return node.height if node else 0

    def _refresh(self, node: IntervalNode[T]) -> None:
        node.height = 1 + max(self._height(node.left), self._height(node.right))
        node.max_end = node.end
        for child in (node.left, node.right):
            if child is not None and child.max_end > node.max_end:
                node.max_end = child.max_end

    def _replace_child(self, old: IntervalNode[T], new: IntervalNode[T]) -> None:
        new.parent = old.parent
        if old.parent is None:
            self.root = new
        elif old is old.parent.left:
            old.parent.left = new
        else:
            old.parent.right = new

    def _rotate_left(self, x: IntervalNode[T]) -> None:
        y = x.right
        x.right = y.left
        if y.left:
            y.left.parent = x
        self._replace_child(x, y)
        y.left = x
        x.parent = y
        self._refresh(x)
        self._refresh(y)

    def _rotate_right(self, y: IntervalNode[T]) -> None:
        x = y.left
        y.left = x.right
        if x.right:
            x.right.parent = y
        self._replace_child(y, x)
        x.right = y
        y.parent = x
        self._refresh(y)
        self._refresh(x)

    def _rebalance(self, node: Optional[IntervalNode[T]]) -> None:
        # Walk to the root fixing heights, max_end and AVL balance
        while node:
            self._refresh(node)
            balance = self._height(node.left) - self._height(node.right)
            if balance > 1:
                if self._height(node.left.left) < self._height(node.left.right):
                    self._rotate_left(node.left)
                self._rotate_right(node)
                node = node.parent
            elif balance < -1:
                if self._height(node.right.right) < self._height(node.right.left):
                    self._rotate_right(node.right)
                self._rotate_left(node)
                node = node.parent
            node = node.parent

    # --- Public API ---

    def insert(self, start: T, end: T, data: Any = None) -> IntervalNode[T]:
        """Insert the closed interval [start, end]. Requires start <= end."""
        if end < start:
            raise ValueError("Interval end precedes start")
        new_node = IntervalNode(start, end, data)
        self._size += 1
        if self.root is None:
            self.root = new_node
            return new_node

        parent = self.root
        while True:
            branch = 'left' if start < parent.start else 'right'
            child = getattr(parent, branch)
            if child is None:
                setattr(parent, branch, new_node)
                new_node.parent = parent
                break
            parent = child

        self._rebalance(parent)
        return new_node

    def find_intersecting(self, start: T, end: T) -> list[IntervalNode[T]]:
        """
        Nodes whose closed interval shares at least one point with [start, end].

        Ordered by interval start.
        """
        found: list[IntervalNode[T]] = []

        def _search(node: Optional[IntervalNode[T]]):
            if node is None or node.max_end < start:
                return
            _search(node.left)
            if node.start <= end:
                if node.end >= start:
                    found.append(node)
                _search(node.right)

        _search(self.root)
        return found
