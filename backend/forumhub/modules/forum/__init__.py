"""
Forum Module - Nested forums with inherited access control.

Features:
- Forum tree (roots, subforums, move, delete policy)
- Access grants with nearest-wins inheritance
- Posts and threaded comments gated by forum access
"""

from forumhub.modules.forum.access import AccessDecision, AccessResolver
from forumhub.modules.forum.posts import PostService
from forumhub.modules.forum.service import ForumService

__all__ = [
    "AccessDecision",
    "AccessResolver",
    "ForumService",
    "PostService",
]
