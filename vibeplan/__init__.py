"""VibePlan: turn a repository into a searchable knowledge base and plan work on it."""

__version__ = "0.3.0"
