"""
ForumHub - nested forums with inherited access control.
"""

__version__ = "1.0.0"
