"""Comment extraction and AI analysis tasks with a durable, single-concurrency task core."""

__version__ = "0.1.0"
