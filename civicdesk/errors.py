# Exception taxonomy for the dispatch engine and the complaint store

from typing import Dict, Optional


class CivicDeskError(Exception):
    """Base class for every error the core raises on purpose."""
    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class DraftValidationError(CivicDeskError):
    """A draft or request failed validation before any state was touched."""
    status_code = 422

    def __init__(self, errors: Dict[str, str], detail: str = "Complaint validation failed"):
        super().__init__(detail)
        self.errors = errors


class ComplaintNotFoundError(CivicDeskError):
    status_code = 404

    def __init__(self, complaint_id: str):
        super().__init__("Complaint not found")
        self.complaint_id = complaint_id


class AuthenticationRequiredError(CivicDeskError):
    status_code = 401

    def __init__(self, detail: str = "Not authenticated"):
        super().__init__(detail)


class PermissionDeniedError(CivicDeskError):
    status_code = 403


class FeedbackNotAllowedError(PermissionDeniedError):
    status_code = 409

    def __init__(self, current_status: Optional[str] = None):
        super().__init__("Feedback can only be submitted on resolved complaints")
        self.current_status = current_status


class RecommendationError(CivicDeskError):
    """The classification capability failed; no recommendation was produced."""
    status_code = 502

    def __init__(self, detail: str = "AI processing failed"):
        super().__init__(detail)


class NoEligibleOfficerError(CivicDeskError):
    """The roster has nobody in the department a complaint must go to."""
    status_code = 409

    def __init__(self, department: Optional[str] = None):
        if department:
            super().__init__(f"No officer available in the {department} department")
        else:
            super().__init__("No officers available to assign")
        self.department = department


class ClassificationError(CivicDeskError):
    """The classification capability errored, timed out, or returned junk."""
    status_code = 502


class CommentNotFoundError(CivicDeskError):
    status_code = 404

    def __init__(self, comment_id: str):
        super().__init__("Comment not found")
        self.comment_id = comment_id
