"""DocVault activity trail."""

from docvault.activity.recorder import ActivityAction, ActivityRecorder

__all__ = ["ActivityAction", "ActivityRecorder"]
