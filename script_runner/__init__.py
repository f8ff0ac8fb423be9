"""Script Runner API: queued, concurrency-capped shell script execution."""

__version__ = "0.1.0"
