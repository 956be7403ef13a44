"""
Tutor Analytics.

Read-side analytics over AI tutoring interaction events, scoped by caller.
"""
