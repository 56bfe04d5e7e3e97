"""
TaskGraph - task & dependency graph engine.

Tag-partitioned task storage with cycle-safe dependency management,
impact analysis and multi-format graph rendering.
"""

__version__ = "0.1.0"
__author__ = "TaskGraph Team"

from taskgraph.tasks.manager import TaskManager
from taskgraph.graph.dependency_manager import DependencyGraphManager
from taskgraph.graph.report import GraphReportRequest, build_graph_report

__all__ = [
    "DependencyGraphManager",
    "GraphReportRequest",
    "TaskManager",
    "__version__",
    "build_graph_report",
]
