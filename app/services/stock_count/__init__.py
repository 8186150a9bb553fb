"""
Stock count reconciliation engine.

- variance: Decimal variance calculation and count value parsing
- session_store: items plus the versioned edit buffer of one count session
- navigation: library sections, canonical order, next/previous navigation
- batch_save: section / whole count / single item saves
- persistence: item write sinks
- directory: organization and workflow lookups
- approver_resolution: who reviews a submitted count
"""
from app.services.stock_count.variance import Variance, compute_variance, parse_count_value
from app.services.stock_count.session_store import CountSessionStore
from app.services.stock_count.navigation import CountNavigator, canonical_order, normalize_library
from app.services.stock_count.batch_save import BatchSaveCoordinator
from app.services.stock_count.persistence import CountItemSink, SqlCountItemSink
from app.services.stock_count.directory import (
    OrganizationDirectory, WorkflowConfigSource,
    SqlOrganizationDirectory, SqlWorkflowConfig,
)
from app.services.stock_count.approver_resolution import ApproverResolver, role_rank

__all__ = [
    "Variance",
    "compute_variance",
    "parse_count_value",
    "CountSessionStore",
    "CountNavigator",
    "canonical_order",
    "normalize_library",
    "BatchSaveCoordinator",
    "CountItemSink",
    "SqlCountItemSink",
    "OrganizationDirectory",
    "WorkflowConfigSource",
    "SqlOrganizationDirectory",
    "SqlWorkflowConfig",
    "ApproverResolver",
    "role_rank",
]
