"""
DocVault Activity Recorder — Append-only audit trail of mutating actions.

Records are written after the action they describe has committed. Callers
treat a recorder failure as non-fatal: the action stands and the failure
is logged.
"""

from __future__ import annotations

import enum
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from docvault.db.models import ActivityLog, User
from docvault.db.session import session_scope
from docvault.engine.errors import DocVaultRecordError

logger = logging.getLogger("docvault.activity.recorder")

DEFAULT_RECENT_LIMIT = 100


class ActivityAction(str, enum.Enum):
    UPLOAD = "UPLOAD"
    MANAGER_UPLOAD = "MANAGER_UPLOAD"
    DELETE = "DELETE"
    TITLE_UPDATE = "TITLE_UPDATE"
    MANAGER_APPROVED = "MANAGER_APPROVED"
    MANAGER_REJECTED = "MANAGER_REJECTED"


class ActivityRecorder:
    """Writes and reads activity_logs rows."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def record(self, actor_user_id: Optional[int], action: ActivityAction, details: str) -> Dict[str, Any]:
        """
        Append one record.

        Raises:
            DocVaultRecordError if the row cannot be written.
        """
        try:
            with session_scope(self._session_factory) as session:
                entry = ActivityLog(
                    user_id=actor_user_id,
                    action=ActivityAction(action).value,
                    details=details,
                )
                session.add(entry)
                session.flush()
                entry_id = entry.id
        except SQLAlchemyError as e:
            raise DocVaultRecordError(
                "Failed to write activity record",
                record_type="activity_log",
                operation="create",
                user_id=actor_user_id,
                detail=str(e),
            ) from e

        action_name = ActivityAction(action).value
        logger.info(f"Activity {action_name} by user={actor_user_id}")
        return {"id": entry_id, "userId": actor_user_id, "action": action_name, "details": details}

    def try_record(self, actor_user_id: Optional[int], action: ActivityAction, details: str) -> bool:
        """Record, logging instead of raising on failure. Returns success."""
        try:
            self.record(actor_user_id, action, details)
            return True
        except DocVaultRecordError as e:
            logger.error(f"Activity record dropped: {e.to_json()}")
            return False

    def recent(self, limit: int = DEFAULT_RECENT_LIMIT) -> List[Dict[str, Any]]:
        """Most recent records across all users, newest first."""
        return self._query(None, limit)

    def for_user(self, user_id: int, limit: int = DEFAULT_RECENT_LIMIT) -> List[Dict[str, Any]]:
        """Most recent records performed by one user, newest first."""
        return self._query(user_id, limit)

    def manager_activity(self, limit: int = DEFAULT_RECENT_LIMIT) -> List[Dict[str, Any]]:
        """Most recent records performed by any MANAGER, flattened for the admin view."""
        return [
            {
                "id": entry["id"],
                "managerId": entry["userId"],
                "managerName": entry["user"]["name"],
                "managerEmail": entry["user"]["email"],
                "action": entry["action"],
                "details": entry["details"],
                "createdAt": entry["createdAt"],
                "activityType": "LOG",
            }
            for entry in self._query(None, limit, role="MANAGER")
        ]

    def _query(self, user_id: Optional[int], limit: int, role: Optional[str] = None) -> List[Dict[str, Any]]:
        session = self._session_factory()
        try:
            query = session.query(ActivityLog)
            if role is not None:
                query = query.join(User, ActivityLog.user_id == User.id).filter(User.role == role)
            if user_id is not None:
                query = query.filter(ActivityLog.user_id == user_id)
            rows = (
                query.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
                .limit(limit)
                .all()
            )
            return [row.to_dict() for row in rows]
        except SQLAlchemyError as e:
            raise DocVaultRecordError(
                "Failed to read activity records",
                record_type="activity_log",
                operation="read",
                detail=str(e),
            ) from e
        finally:
            session.close()
