"""Reconstruct reply threads from a song's flat comment list.

Comments are stored flat, each optionally naming the comment it replies to.
:func:`build_comment_tree` turns that list into a forest:

  1. map every comment id to a node with an empty reply list;
  2. walk the comments in their original order, appending each node to its
     parent's replies, or to the top level when it has no parent or the
     parent id does not resolve (deleted, corrupted, from another song).

No comment is ever dropped, and siblings keep their original order. The
builder imposes no depth limit; :data:`MAX_REPLY_DEPTH` only controls where
a reply affordance is offered.
"""

from dataclasses import dataclass, field
from typing import Iterable, Iterator

from .models import Comment

# Nodes at depth 0..MAX_REPLY_DEPTH-1 can be replied to.
MAX_REPLY_DEPTH = 3


@dataclass
class CommentNode:
    comment: Comment
    replies: list["CommentNode"] = field(default_factory=list)

    @property
    def id(self) -> str | None:
        return self.comment.id


def build_comment_tree(comments: Iterable[Comment]) -> list[CommentNode]:
    """Return the top-level nodes of the reply forest for *comments*."""
    nodes = [CommentNode(comment) for comment in comments]
    by_id = {node.id: node for node in nodes if node.id}

    parents: dict[int, CommentNode] = {}
    for node in nodes:
        parent = by_id.get(node.comment.parent_id) if node.comment.parent_id else None
        if parent is not None and parent is not node:
            parent.replies.append(node)
            parents[id(node)] = parent

    # Reference cycles are unreachable from any root; cut each at its first member.
    reached = {id(n) for _, n in walk([n for n in nodes if id(n) not in parents])}
    for node in nodes:
        if id(node) not in reached:
            parent = parents.pop(id(node))
            parent.replies = [r for r in parent.replies if r is not node]
            reached.update(id(n) for _, n in walk([node]))

    return [node for node in nodes if id(node) not in parents]


def can_reply(depth: int) -> bool:
    return depth < MAX_REPLY_DEPTH


def walk(forest: list[CommentNode], depth: int = 0) -> Iterator[tuple[int, CommentNode]]:
    """Yield ``(depth, node)`` pairs depth-first, in display order.

    Iterative, so reply chains of any length can be traversed.
    """
    stack = [(depth, iter(forest))]
    while stack:
        level, siblings = stack[-1]
        node = next(siblings, None)
        if node is None:
            stack.pop()
            continue
        yield level, node
        if node.replies:
            stack.append((level + 1, iter(node.replies)))


def find_node(forest: list[CommentNode], comment_id: str) -> CommentNode | None:
    for _, node in walk(forest):
        if node.id == comment_id:
            return node
    return None


def subtree_ids(node: CommentNode) -> list[str]:
    """Ids of *node* and every reply beneath it, depth-first."""
    return [n.id for _, n in walk([node]) if n.id]


def count_nodes(forest: list[CommentNode]) -> int:
    return sum(1 for _ in walk(forest))
