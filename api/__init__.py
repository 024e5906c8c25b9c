"""
API - REST API server for Reality Map generation.

This package contains the FastAPI server that exposes tree generation
and analysis via HTTP endpoints.
"""

__version__ = "0.1.0"
