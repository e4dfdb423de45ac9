"""Nyx: dependency-aware task orchestration for autonomous coding runs."""

__version__ = "0.1.0"
