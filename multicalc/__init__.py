"""Multi-user calculator: an HTTP orchestrator for arithmetic expressions and a worker-pool agent."""

__version__ = "0.1.0"