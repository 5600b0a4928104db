"""
Sync — Pagination, reconciliation and per-content-type processors.
"""

from .conflicts import ConflictResolver
from .identity import IdentityReconciler, ReconciliationContext
from .integrity import IntegrityReport, IntegrityVerifier
from .pagination import CursorManager, PaginationResult
from .restrictions import RestrictionImporter
from .revisions import DeletedRevisionImporter, RevisionImporter, RevisionTagImporter
from .tags import TagApplier

__all__ = [
    "ConflictResolver",
    "CursorManager",
    "DeletedRevisionImporter",
    "IdentityReconciler",
    "IntegrityReport",
    "IntegrityVerifier",
    "PaginationResult",
    "ReconciliationContext",
    "RestrictionImporter",
    "RevisionImporter",
    "RevisionTagImporter",
    "TagApplier",
]
