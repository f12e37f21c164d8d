"""Git branch lifecycle tool.

Features:
- Clean up local branches whose remote branch is gone
- Merge a source branch into many local branches (fast-forward only by default)
- Create local tracking branches for every branch of a remote
- Interactive delete and switch
- Branch protection and ignore patterns
- Always returns to the branch you started on
"""

__version__ = "0.3.0"
