"""
Uploads Module

Upload lifecycle records and the state machine that drives them.
"""

from imprint.modules.uploads.models import Upload, UploadStatus, StageStatus

__all__ = ["Upload", "UploadStatus", "StageStatus"]
