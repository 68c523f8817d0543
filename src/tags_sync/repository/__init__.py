"""Repository access layer: the only part of tags-sync that touches git or the network.

- RepositoryAccess: the abstract capability interface the engine is written against
- GitRepositoryAccess: GitHub-hosted repositories through GitPython, PyGithub and httpx
"""

from .base import RepositoryAccess
from .git_access import GitRepositoryAccess

__all__ = [
    "GitRepositoryAccess",
    "RepositoryAccess",
]
