"""AutoFlow: agentic pipeline from change requests to pull requests."""

__version__ = "0.1.0"
