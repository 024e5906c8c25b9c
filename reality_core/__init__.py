"""
Reality Core - Branching outcome tree generation and analysis.

This package contains the engine that turns a normalized extract of
upstream simulation runs into a probabilistic tree of possible futures,
scores every node, classifies root-to-outcome paths and reduces the
result into an analysis report.
"""

__version__ = "0.1.0"
