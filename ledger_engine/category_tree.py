from __future__ import annotations

import logging
import threading
from bisect import bisect_left
from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)


class CategoryType(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    ASSET = "ASSET"
    LIABILITY = "LIABILITY"
    LOAN = "LOAN"
    BALANCE = "BALANCE"


CATEGORY_TYPE_ORDER = {
    CategoryType.INCOME: 0,
    CategoryType.EXPENSE: 1,
    CategoryType.ASSET: 2,
    CategoryType.LIABILITY: 3,
    CategoryType.LOAN: 4,
    CategoryType.BALANCE: 5,
}


class CategoryTreeCorrupt(RuntimeError):
    """Raised when nested-set bounds are inconsistent or a category id is unknown."""


class InvalidCategoryMove(ValueError):
    """Raised when a move would place a category inside its own subtree."""


@dataclass(frozen=True)
class Category:
    id: int
    name: str
    category_type: CategoryType
    left: int
    right: int
    parent_id: int | None = None
    level: int = 0


class CategoryTreeSnapshot:
    """Immutable, validated view of a category forest.

    Categories are kept sorted by their left bound so that subtree queries
    are a bisect followed by a contiguous scan.
    """

    def __init__(self, categories: Iterable[Category]) -> None:
        ordered = _validate_bounds(categories)
        self._ordered: tuple[Category, ...] = tuple(ordered)
        self._lefts: List[int] = [category.left for category in ordered]
        self._by_id: dict[int, Category] = {category.id: category for category in ordered}

    def __len__(self) -> int:
        return len(self._ordered)

    def __contains__(self, category_id: object) -> bool:
        return category_id in self._by_id

    def get(self, category_id: int) -> Category:
        try:
            return self._by_id[category_id]
        except KeyError as exc:
            raise CategoryTreeCorrupt(f"Unknown category: {category_id}") from exc

    def categories(self) -> tuple[Category, ...]:
        return self._ordered

    def roots(self) -> List[Category]:
        return [category for category in self._ordered if category.parent_id is None]

    def level_of(self, category_id: int) -> int:
        return self.get(category_id).level

    def sort_key(self, category_id: int) -> tuple[int, int]:
        category = self.get(category_id)
        return CATEGORY_TYPE_ORDER[category.category_type], category.left

    def subtree(self, category_id: int) -> List[Category]:
        target = self.get(category_id)
        index = bisect_left(self._lefts, target.left)
        members: List[Category] = []
        while index < len(self._ordered) and self._ordered[index].left < target.right:
            members.append(self._ordered[index])
            index += 1
        return members

    def scope_of(self, category_id: int, include_descendants: bool) -> frozenset[int]:
        if not include_descendants:
            return frozenset({self.get(category_id).id})
        return frozenset(category.id for category in self.subtree(category_id))

    def children_of(self, category_id: int) -> List[Category]:
        return [
            category
            for category in self.subtree(category_id)
            if category.parent_id == category_id
        ]

    def ancestors_of(self, category_id: int) -> List[Category]:
        ancestors: List[Category] = []
        parent_id = self.get(category_id).parent_id
        while parent_id is not None:
            parent = self.get(parent_id)
            ancestors.append(parent)
            parent_id = parent.parent_id
        return ancestors

    def is_leaf(self, category_id: int) -> bool:
        category = self.get(category_id)
        return category.right == category.left + 1

    def is_descendant(self, category_id: int, ancestor_id: int) -> bool:
        category = self.get(category_id)
        ancestor = self.get(ancestor_id)
        return ancestor.left < category.left and category.right < ancestor.right


@dataclass
class _Node:
    id: int
    name: str
    category_type: CategoryType
    parent_id: Optional[int]
    left: int
    right: int


class _Arena:
    """Flat, mutable copy of the tree used while bounds are being rewritten."""

    def __init__(self, snapshot: CategoryTreeSnapshot) -> None:
        self.nodes: List[_Node] = [
            _Node(
                id=category.id,
                name=category.name,
                category_type=category.category_type,
                parent_id=category.parent_id,
                left=category.left,
                right=category.right,
            )
            for category in snapshot.categories()
        ]
        self.index: dict[int, int] = {node.id: position for position, node in enumerate(self.nodes)}

    def node(self, category_id: int) -> _Node:
        try:
            return self.nodes[self.index[category_id]]
        except KeyError as exc:
            raise CategoryTreeCorrupt(f"Unknown category: {category_id}") from exc

    def next_id(self) -> int:
        return max(self.index, default=0) + 1

    def shift(self, nodes: Iterable[_Node], from_bound: int, delta: int) -> None:
        for node in nodes:
            if node.left >= from_bound:
                node.left += delta
            if node.right >= from_bound:
                node.right += delta

    def append(self, node: _Node) -> None:
        self.index[node.id] = len(self.nodes)
        self.nodes.append(node)

    def keep(self, nodes: List[_Node]) -> None:
        self.nodes = nodes
        self.index = {node.id: position for position, node in enumerate(nodes)}

    def freeze(self) -> CategoryTreeSnapshot:
        return CategoryTreeSnapshot(
            Category(
                id=node.id,
                name=node.name,
                category_type=node.category_type,
                left=node.left,
                right=node.right,
                parent_id=node.parent_id,
            )
            for node in self.nodes
        )


class CategoryTree:
    """Nested-set category hierarchy with serialized structural mutations.

    Readers take a snapshot once per computation; `insert`, `move` and
    `delete` rewrite a private copy under a lock and publish it only after
    the rewritten bounds validate.
    """

    def __init__(self, categories: Iterable[Category] = ()) -> None:
        self._lock = threading.Lock()
        self._snapshot = CategoryTreeSnapshot(categories)

    def snapshot(self) -> CategoryTreeSnapshot:
        return self._snapshot

    def get(self, category_id: int) -> Category:
        return self._snapshot.get(category_id)

    def scope_of(self, category_id: int, include_descendants: bool) -> frozenset[int]:
        return self._snapshot.scope_of(category_id, include_descendants)

    def level_of(self, category_id: int) -> int:
        return self._snapshot.level_of(category_id)

    def sort_key(self, category_id: int) -> tuple[int, int]:
        return self._snapshot.sort_key(category_id)

    def insert(
        self,
        parent_id: int | None,
        name: str,
        category_type: CategoryType,
        category_id: int | None = None,
    ) -> Category:
        with self._lock:
            arena = _Arena(self._snapshot)
            if parent_id is None:
                point = max((node.right for node in arena.nodes), default=0) + 1
            else:
                point = arena.node(parent_id).right
            new_id = category_id if category_id is not None else arena.next_id()
            if new_id in arena.index:
                raise CategoryTreeCorrupt(f"Duplicate category id: {new_id}")

            arena.shift(arena.nodes, point, 2)
            arena.append(
                _Node(
                    id=new_id,
                    name=name.strip(),
                    category_type=CategoryType(category_type),
                    parent_id=parent_id,
                    left=point,
                    right=point + 1,
                )
            )
            self._publish(arena)
            logger.debug("Inserted category %s under %s at %s", new_id, parent_id, point)
            return self._snapshot.get(new_id)

    def move(self, category_id: int, new_parent_id: int | None) -> Category:
        with self._lock:
            arena = _Arena(self._snapshot)
            moved = arena.node(category_id)
            old_left, old_right = moved.left, moved.right
            if new_parent_id is not None:
                target = arena.node(new_parent_id)
                if old_left <= target.left and target.right <= old_right:
                    raise InvalidCategoryMove(
                        f"Cannot move category {category_id} under its own subtree ({new_parent_id})."
                    )

            width = old_right - old_left + 1
            subtree = [node for node in arena.nodes if old_left <= node.left and node.right <= old_right]
            subtree_ids = {node.id for node in subtree}
            others = [node for node in arena.nodes if node.id not in subtree_ids]

            arena.shift(others, old_right + 1, -width)
            if new_parent_id is None:
                point = max((node.right for node in others), default=0) + 1
            else:
                point = arena.node(new_parent_id).right
            arena.shift(others, point, width)

            offset = point - old_left
            for node in subtree:
                node.left += offset
                node.right += offset
            moved.parent_id = new_parent_id

            self._publish(arena)
            logger.debug("Moved category %s under %s", category_id, new_parent_id)
            return self._snapshot.get(category_id)

    def delete(self, category_id: int) -> frozenset[int]:
        """Remove a category and its whole subtree; returns the removed ids."""
        with self._lock:
            arena = _Arena(self._snapshot)
            removed = arena.node(category_id)
            old_left, old_right = removed.left, removed.right
            width = old_right - old_left + 1
            remaining = [
                node for node in arena.nodes if not (old_left <= node.left and node.right <= old_right)
            ]
            removed_ids = frozenset(set(arena.index) - {node.id for node in remaining})
            arena.shift(remaining, old_right + 1, -width)
            arena.keep(remaining)
            self._publish(arena)
            logger.debug("Deleted categories %s", sorted(removed_ids))
            return removed_ids

    def _publish(self, arena: _Arena) -> None:
        self._snapshot = arena.freeze()


def _validate_bounds(categories: Iterable[Category]) -> List[Category]:
    rows = list(categories)
    seen_ids: set[int] = set()
    seen_bounds: set[int] = set()
    for category in rows:
        if category.id in seen_ids:
            raise CategoryTreeCorrupt(f"Duplicate category id: {category.id}")
        seen_ids.add(category.id)
        if category.left >= category.right:
            raise CategoryTreeCorrupt(
                f"Category {category.id} has left bound {category.left} >= right bound {category.right}."
            )
        for bound in (category.left, category.right):
            if bound in seen_bounds:
                raise CategoryTreeCorrupt(f"Bound {bound} is used more than once.")
            seen_bounds.add(bound)

    ordered: List[Category] = []
    stack: List[Category] = []
    for category in sorted(rows, key=lambda item: item.left):
        while stack and stack[-1].right < category.left:
            stack.pop()
        enclosing_id = None
        if stack:
            enclosing = stack[-1]
            if category.right > enclosing.right:
                raise CategoryTreeCorrupt(
                    f"Category {category.id} overlaps category {enclosing.id}."
                )
            enclosing_id = enclosing.id
        if category.parent_id != enclosing_id:
            raise CategoryTreeCorrupt(
                f"Category {category.id} declares parent {category.parent_id} "
                f"but its bounds place it under {enclosing_id}."
            )
        leveled = replace(category, category_type=CategoryType(category.category_type), level=len(stack))
        ordered.append(leveled)
        stack.append(leveled)
    return ordered
