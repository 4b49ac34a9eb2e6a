"""DocVault persistence layer — SQLAlchemy models and session helpers."""

from docvault.db.models import ActivityLog, ManagerApplication, Upload, User
from docvault.db.session import init_db, session_scope

__all__ = [
    "ActivityLog",
    "ManagerApplication",
    "Upload",
    "User",
    "init_db",
    "session_scope",
]
