"""impl-planner: prerequisite resolution for end-to-end test implications."""

__version__ = "0.1.0"
