"""
To-do list manager with parent/subtask reconciliation.

Holds an ordered task sequence, keeps subtask families contiguous across
reordering, cascades completion and deletion, and persists the whole
sequence to a pluggable key-value store after every change.
"""

__version__ = "1.0.0"
