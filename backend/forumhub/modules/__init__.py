"""
ForumHub feature modules.
"""
