# Complaint lifecycle store: the single owner of complaint records.
#
# Every mutation is a read-modify-write on a deep copy of one record, done
# under that record's lock, and swapped in only once the whole change (and
# the save-all to the key-value backend) has succeeded.

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError

from .config import new_id, now_utc
from .errors import (
    AuthenticationRequiredError, CommentNotFoundError, ComplaintNotFoundError,
    DraftValidationError, FeedbackNotAllowedError, PermissionDeniedError,
)
from .models import (
    Comment, Complaint, ComplaintCategory, ComplaintDraft, ComplaintStatus, CommunitySort,
    Feedback, PENDING_STATUSES, Recommendation, StatusView, status_rank,
)

logger = logging.getLogger(__name__)

COMPLAINTS_KEY = "complaints"


def field_errors(exc: ValidationError) -> Dict[str, str]:
    errors = {}
    for err in exc.errors():
        field = ".".join(str(p) for p in err.get("loc", ())) or "draft"
        errors.setdefault(field, err.get("msg", "Invalid value"))
    return errors


def _validated(model, data, what: str):
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise DraftValidationError(field_errors(e), detail=f"{what} validation failed") from e


class ComplaintStore:
    def __init__(self, kv, clock: Callable[[], datetime] = now_utc,
                 id_factory: Callable[[], str] = new_id):
        self.kv = kv
        self._clock = clock
        self._new_id = id_factory
        self._lock = threading.RLock()
        self._record_locks: Dict[str, threading.Lock] = {}
        self._complaints: Dict[str, Complaint] = {}
        self._load()

    # -----------------------------------------------------------------------
    # Persistence
    # -----------------------------------------------------------------------
    def _load(self) -> None:
        for item in self.kv.load(COMPLAINTS_KEY, []) or []:
            complaint = Complaint.model_validate(item)
            self._complaints[complaint.id] = complaint
            self._record_locks[complaint.id] = threading.Lock()
        logger.info("Loaded %d complaints", len(self._complaints))

    def _save_all(self) -> None:
        self.kv.save(COMPLAINTS_KEY, [c.model_dump(mode="json") for c in self._complaints.values()])

    def _commit(self, previous: Optional[Complaint], updated: Complaint) -> None:
        with self._lock:
            self._complaints[updated.id] = updated
            try:
                self._save_all()
            except Exception:
                if previous is None:
                    del self._complaints[updated.id]
                else:
                    self._complaints[updated.id] = previous
                raise

    def _get_or_raise(self, complaint_id: str) -> Complaint:
        complaint = self._complaints.get(complaint_id)
        if complaint is None:
            raise ComplaintNotFoundError(complaint_id)
        return complaint

    def _update(self, complaint_id: str, mutate: Callable[[Complaint], None]) -> Complaint:
        with self._lock:
            lock = self._record_locks.get(complaint_id)
        if lock is None:
            raise ComplaintNotFoundError(complaint_id)
        with lock:
            current = self._get_or_raise(complaint_id)
            updated = current.model_copy(deep=True)
            mutate(updated)
            self._commit(current, updated)
            return updated.model_copy(deep=True)

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------
    def get(self, complaint_id: str) -> Complaint:
        return self._get_or_raise(complaint_id).model_copy(deep=True)

    def list(self) -> List[Complaint]:
        """All complaints, newest submission first."""
        with self._lock:
            items = [c.model_copy(deep=True) for c in self._complaints.values()]
        return sorted(items, key=lambda c: c.submitted_at, reverse=True)

    def count(self) -> int:
        return len(self._complaints)

    def filter_by_status(self, view: Union[StatusView, str] = StatusView.ALL) -> List[Complaint]:
        try:
            view = StatusView(view)
        except ValueError as e:
            raise DraftValidationError({"view": f"Unknown view {view!r}"}) from e
        complaints = self.list()
        if view == StatusView.ALL:
            return complaints
        if view == StatusView.PENDING:
            return [c for c in complaints if c.status in PENDING_STATUSES]
        return [c for c in complaints if c.status.value == view.value]

    def rank(self, sort: Union[CommunitySort, str] = CommunitySort.PRIORITY,
             now: Optional[datetime] = None) -> List[Complaint]:
        """Order the community feed by trending score, upvotes, recency, or locality."""
        try:
            sort = CommunitySort(sort)
        except ValueError as e:
            raise DraftValidationError({"sort": f"Unknown sort {sort!r}"}) from e
        complaints = self.list()
        if sort == CommunitySort.UPVOTES:
            return sorted(complaints, key=lambda c: c.upvote_count, reverse=True)
        if sort == CommunitySort.RECENT:
            return complaints
        if sort == CommunitySort.LOCALITY:
            return sorted(complaints, key=lambda c: c.location.casefold())
        now = now or self._clock()

        def score(c: Complaint) -> float:
            hours_ago = (now - c.submitted_at).total_seconds() / 3600
            return c.upvote_count * 2 + max(0.0, 100 - hours_ago / 24)
        return sorted(complaints, key=score, reverse=True)

    def statistics(self, days: Optional[int] = None) -> dict:
        complaints = self.list()
        if days is not None:
            since = self._clock() - timedelta(days=days)
            complaints = [c for c in complaints if c.submitted_at >= since]
        status_dist = {s.value: 0 for s in ComplaintStatus}
        category_dist = {c.value: 0 for c in ComplaintCategory}
        durations = []
        for c in complaints:
            status_dist[c.status.value] += 1
            category_dist[c.category.value] += 1
            if c.resolved_at is not None:
                durations.append((c.resolved_at - c.submitted_at).total_seconds() / 3600)
        top = sorted(complaints, key=lambda c: c.upvote_count, reverse=True)[:5]
        return {
            "total_complaints": len(complaints),
            "pending_count": sum(status_dist[s.value] for s in PENDING_STATUSES),
            "resolved_count": status_dist[ComplaintStatus.RESOLVED.value],
            "avg_resolution_hours": round(sum(durations) / len(durations), 1) if durations else 0.0,
            "status_distribution": status_dist,
            "category_distribution": category_dist,
            "top_upvoted": [{"id": c.id, "category": c.category.value, "location": c.location,
                             "upvotes": c.upvote_count} for c in top if c.upvote_count],
        }

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------
    def create(self, draft: Union[ComplaintDraft, dict], submitter_id: str) -> Complaint:
        if not submitter_id:
            raise AuthenticationRequiredError()
        draft = _validated(ComplaintDraft, draft, "Complaint")
        complaint = Complaint(
            id=self._new_id(), submitter_id=submitter_id, category=draft.category,
            description=draft.description, location=draft.location,
            latitude=draft.latitude, longitude=draft.longitude,
            status=ComplaintStatus.RECEIVED, submitted_at=self._clock(),
            before_images=list(draft.photos))
        with self._lock:
            self._commit(None, complaint)
            self._record_locks[complaint.id] = threading.Lock()
        logger.info("Complaint %s created by %s (%s)", complaint.id, submitter_id, complaint.category.value)
        return complaint.model_copy(deep=True)

    def import_complaints(self, complaints: Iterable[Union[Complaint, dict]]) -> int:
        """Bulk-load existing records (seed data); ids already present are skipped."""
        added = 0
        with self._lock:
            for item in complaints:
                complaint = _validated(Complaint, item, "Complaint")
                if complaint.id in self._complaints:
                    continue
                self._complaints[complaint.id] = complaint
                self._record_locks[complaint.id] = threading.Lock()
                added += 1
            if added:
                self._save_all()
        return added

    def set_status(self, complaint_id: str, status: Union[ComplaintStatus, str]) -> Complaint:
        """Manual status override. Any target is allowed, including moving backwards."""
        try:
            status = ComplaintStatus(status)
        except ValueError as e:
            raise DraftValidationError({"status": f"Unknown status {status!r}"}) from e

        def mutate(c: Complaint) -> None:
            previous = c.status
            c.status = status
            if status == ComplaintStatus.RESOLVED and c.resolved_at is None:
                c.resolved_at = self._clock()
            if status_rank(status) < status_rank(previous):
                logger.info("Manual status override on %s: %s -> %s", c.id, previous.value, status.value)
        return self._update(complaint_id, mutate)

    def attach_image(self, complaint_id: str, image: str,
                     status_context: Union[ComplaintStatus, str]) -> Complaint:
        if not image or not image.strip():
            raise DraftValidationError({"image": "Image must not be empty"})
        try:
            status_context = ComplaintStatus(status_context)
        except ValueError as e:
            raise DraftValidationError({"status_context": f"Unknown status {status_context!r}"}) from e

        def mutate(c: Complaint) -> None:
            if status_context == ComplaintStatus.RESOLVED:
                c.after_image = image
            else:
                c.progress_images[status_context.value] = image
        return self._update(complaint_id, mutate)

    def toggle_upvote(self, complaint_id: str, user_id: str) -> Complaint:
        if not user_id:
            raise AuthenticationRequiredError("Sign in to upvote")

        def mutate(c: Complaint) -> None:
            if user_id in c.upvoted_by:
                c.upvoted_by.remove(user_id)
            else:
                c.upvoted_by.append(user_id)
        return self._update(complaint_id, mutate)

    def add_comment(self, complaint_id: str, author_id: str, text: str) -> Complaint:
        if not author_id:
            raise AuthenticationRequiredError("Sign in to comment")
        if not text or not text.strip():
            raise DraftValidationError({"text": "Comment must not be empty"})
        comment = Comment(id=self._new_id(), author_id=author_id, text=text.strip(),
                          created_at=self._clock())

        def mutate(c: Complaint) -> None:
            c.comments.append(comment)
        return self._update(complaint_id, mutate)

    def delete_comment(self, complaint_id: str, comment_id: str, user_id: str) -> Complaint:
        def mutate(c: Complaint) -> None:
            for index, comment in enumerate(c.comments):
                if comment.id == comment_id:
                    break
            else:
                raise CommentNotFoundError(comment_id)
            if comment.author_id != user_id:
                raise PermissionDeniedError("Only the author can delete this comment")
            del c.comments[index]
        return self._update(complaint_id, mutate)

    def submit_feedback(self, complaint_id: str, feedback: Union[Feedback, dict],
                        submitter_id: Optional[str] = None) -> Complaint:
        """Attach feedback to a resolved complaint; a later submission replaces the earlier one.

        When *submitter_id* is given, only the citizen who filed the complaint may rate it.
        """
        feedback = _validated(Feedback, feedback, "Feedback")

        def mutate(c: Complaint) -> None:
            if submitter_id is not None and c.submitter_id != submitter_id:
                raise PermissionDeniedError("You can only give feedback on your own complaints")
            if c.status != ComplaintStatus.RESOLVED:
                raise FeedbackNotAllowedError(c.status.value)
            if c.feedback is not None:
                logger.info("Feedback on %s updated", c.id)
            c.feedback = feedback.model_copy()
        return self._update(complaint_id, mutate)

    def accept_recommendation(self, complaint_id: str,
                              recommendation: Union[Recommendation, dict]) -> Complaint:
        recommendation = _validated(Recommendation, recommendation, "Recommendation")

        def mutate(c: Complaint) -> None:
            c.category = recommendation.category
            c.department = recommendation.department
            c.assigned_officer = recommendation.officer.model_copy()
            c.status = ComplaintStatus.UNDER_REVIEW
        updated = self._update(complaint_id, mutate)
        logger.info("Recommendation accepted for %s: %s -> %s", complaint_id,
                    recommendation.category.value, recommendation.officer.id)
        return updated
