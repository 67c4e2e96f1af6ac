"""Data access layer repositories.

Each repository module provides async functions for database operations.
All code uses SQLAlchemy ORM models from `deepdive.database.orm` with the
`get_session()` context manager and returns plain dicts.

ORM-based repositories:
- ai_models_orm: model profiles and encrypted provider credentials
- answers_orm: stage answers, question results and dimension scores
- completions_orm: content-addressed completion cache rows
- cost_ledger_orm: per-call spend ledger
- documents_orm: vector search over document chunks
- error_logs_orm: persisted pipeline errors
- notifications_orm: alert channels and delivery events
- registry_orm: question registry, scoring factors and ticker facts
- runs_orm: runs and per-ticker run items
"""

from . import ai_models_orm
from . import answers_orm
from . import completions_orm
from . import cost_ledger_orm
from . import documents_orm
from . import error_logs_orm
from . import notifications_orm
from . import registry_orm
from . import runs_orm

__all__ = [
    "ai_models_orm",
    "answers_orm",
    "completions_orm",
    "cost_ledger_orm",
    "documents_orm",
    "error_logs_orm",
    "notifications_orm",
    "registry_orm",
    "runs_orm",
]
