"""Storage -- moderation items, workflow history, and content subjects.

The item store is the single source of truth for workflow state; the content
store owns subject status.  Both are file-backed JSON documents guarded by a
lock with a per-call timeout.
"""
