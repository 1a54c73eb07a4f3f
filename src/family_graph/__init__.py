"""Genealogical relationship engine.

Maintains a graph of individuals and unions, enforces its invariants
(parental gender, acyclic ancestry, per-husband marriage order) and derives
relationship views with a read-through cache.
"""

__version__ = "0.1.0"

from .cache import CacheBackend, CacheFacade, CacheKind, MemoryCache
from .cancellation import CancellationToken
from .config import CONFIG, EngineConfig
from .engine import FamilyGraphEngine, build_engine
from .exceptions import (
    AlreadyExists,
    CircularRelation,
    ErrorCode,
    FamilyGraphError,
    GenderMismatch,
    HasChildren,
    InFamily,
    InvalidInput,
    InvalidRelation,
    NotFound,
    OperationCancelled,
)
from .models import (
    AddParentResult,
    ChildLink,
    Gender,
    Individual,
    IndividualDraft,
    IndividualPatch,
    ParentDraft,
    ParentRole,
    Parents,
    PedigreeEntry,
    SearchPage,
    SpouseRecord,
    TreeNode,
    Union,
    UnionDraft,
)
from .repository import MemoryRepository, Repository, SQLiteRepository

__all__ = [
    "FamilyGraphEngine",
    "build_engine",
    "EngineConfig",
    "CONFIG",
    "CancellationToken",
    # Collaborators
    "Repository",
    "MemoryRepository",
    "SQLiteRepository",
    "CacheBackend",
    "CacheFacade",
    "CacheKind",
    "MemoryCache",
    # Models
    "Gender",
    "ParentRole",
    "Individual",
    "Union",
    "ChildLink",
    "IndividualDraft",
    "IndividualPatch",
    "ParentDraft",
    "UnionDraft",
    "Parents",
    "SpouseRecord",
    "PedigreeEntry",
    "TreeNode",
    "SearchPage",
    "AddParentResult",
    # Errors
    "ErrorCode",
    "FamilyGraphError",
    "InvalidInput",
    "NotFound",
    "GenderMismatch",
    "InvalidRelation",
    "CircularRelation",
    "HasChildren",
    "InFamily",
    "AlreadyExists",
    "OperationCancelled",
]
