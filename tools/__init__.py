"""
Tools the model can call: typed argument schemas, implementations and the
executor that gates, caches and dispatches them.

Import the executor from tools.dispatch and shared types from tools._common.
This init only re-exports the walking helpers, which the index modules import
before any tool module exists.
"""

from tools.gitignore import (  # noqa: F401
    DEFAULT_SKIP_DIRS,
    invalidate_gitignore_cache,
    is_ignored,
    load_gitignore,
    walk_project,
)
