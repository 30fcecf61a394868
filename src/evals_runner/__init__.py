"""Evaluation harness for coding-benchmark runs."""

__version__ = "0.1.0"
