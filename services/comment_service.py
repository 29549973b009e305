"""
Comment threading.

The repository returns a flat page of comments. Grouping replies under their
parent is a presentation concern, done here for the comments endpoint.
Threads are one level deep: a reply to a reply is listed under the top-level
comment it descends from, and keeps its own ``parent_id``.
"""

from typing import Dict, List

from core.models import Comment, CommentRead, CommentThread


def thread_root(comment: Comment, by_id: Dict[str, Comment]) -> Comment:
    """The furthest ancestor of ``comment`` that is on the page"""
    seen = {comment.id}
    while comment.parent_id in by_id and comment.parent_id not in seen:
        comment = by_id[comment.parent_id]
        seen.add(comment.id)
    return comment


def build_comment_threads(comments: List[Comment]) -> List[CommentThread]:
    """Group a flat page into top-level comments with their ``replies``.

    Top-level order follows the page order. Replies, nested ones included, are
    listed oldest first under their top-level ancestor. A reply whose parent
    is not on the page is promoted to a top-level entry so nothing on the page
    disappears.
    """
    by_id = {comment.id: comment for comment in comments}
    replies: Dict[str, List[CommentRead]] = {}
    roots: List[Comment] = []

    for comment in comments:
        root = thread_root(comment, by_id)
        if root is comment:
            roots.append(comment)
        else:
            replies.setdefault(root.id, []).append(CommentRead.model_validate(comment))

    threads = []
    for comment in roots:
        children = sorted(replies.get(comment.id, []), key=lambda r: r.created_at)
        threads.append(
            CommentThread(**CommentRead.model_validate(comment).model_dump(), replies=children)
        )
    return threads
