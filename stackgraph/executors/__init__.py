"""
Executors for stackgraph.
"""

from .asyncpool import AsyncPoolExecutor, ExecutionContext

__all__ = ["AsyncPoolExecutor", "ExecutionContext"]
