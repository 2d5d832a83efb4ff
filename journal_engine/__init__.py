"""
Task-graph execution engine for a journaling assistant.
"""

__version__ = "0.1.0"
