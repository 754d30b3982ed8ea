"""State model for the tasks, resources and async operations an async runtime console shows."""

__version__ = "0.1.0"