"""
Complaint store tests: creation invariants, status and image updates,
upvotes, comments, feedback, accepting a recommendation, read views, and
persistence through the key-value backend.
"""

import pytest

from civicdesk.errors import (
    AuthenticationRequiredError, CommentNotFoundError, ComplaintNotFoundError,
    DraftValidationError, FeedbackNotAllowedError, PermissionDeniedError,
)
from civicdesk.models import ComplaintCategory, ComplaintStatus, Department, Recommendation
from civicdesk.persistence import JsonFileKeyValueStore, MemoryKeyValueStore
from civicdesk.seed import COMPLAINTS, import_demo_data
from civicdesk.store import ComplaintStore

from conftest import make_draft


class FlakyKeyValueStore(MemoryKeyValueStore):
    def __init__(self):
        super().__init__()
        self.fail = False

    def save(self, key, value):
        if self.fail:
            raise IOError("disk full")
        super().save(key, value)


def resolved(store, **overrides):
    complaint = store.create(make_draft(**overrides), "citizen-a")
    return store.set_status(complaint.id, ComplaintStatus.RESOLVED)


# ═══════════════════════════════════════════════════════════════════════════════
# CREATE
# ═══════════════════════════════════════════════════════════════════════════════

class TestCreate:
    def test_new_complaint_defaults(self, store, clock):
        c = store.create(make_draft(photos=["https://img.example.org/a.jpg", "data:image/png;base64,AA"]),
                         "citizen-a")
        assert c.status == ComplaintStatus.RECEIVED
        assert c.submitter_id == "citizen-a"
        assert c.submitted_at == clock.now
        assert c.resolved_at is None
        assert c.before_images == ["https://img.example.org/a.jpg", "data:image/png;base64,AA"]
        assert c.upvoted_by == [] and c.comments == []
        assert c.feedback is None and c.after_image is None
        assert store.get(c.id) == c

    def test_ids_are_unique(self, store):
        ids = {store.create(make_draft(), "citizen-a").id for _ in range(5)}
        assert len(ids) == 5

    def test_coordinates_are_kept(self, store):
        c = store.create(make_draft(latitude=28.61, longitude=77.21), "citizen-a")
        assert (c.latitude, c.longitude) == (28.61, 77.21)

    @pytest.mark.parametrize("overrides, field", [
        ({"photos": []}, "photos"),
        ({"photos": ["a.jpg", "b.jpg", "c.jpg", "d.jpg"]}, "photos"),
        ({"photos": ["   "]}, "photos"),
        ({"description": "too short"}, "description"),
        ({"location": ""}, "location"),
        ({"category": "Noise"}, "category"),
    ])
    def test_invalid_draft_rejected(self, store, overrides, field):
        with pytest.raises(DraftValidationError) as exc:
            store.create(make_draft(**overrides), "citizen-a")
        assert field in exc.value.errors
        assert store.count() == 0

    def test_latitude_without_longitude_rejected(self, store):
        with pytest.raises(DraftValidationError):
            store.create(make_draft(latitude=10.0), "citizen-a")
        assert store.count() == 0

    def test_requires_submitter(self, store):
        with pytest.raises(AuthenticationRequiredError):
            store.create(make_draft(), "")

    def test_unknown_id(self, store):
        with pytest.raises(ComplaintNotFoundError):
            store.get("missing")
        with pytest.raises(ComplaintNotFoundError):
            store.set_status("missing", ComplaintStatus.RESOLVED)


# ═══════════════════════════════════════════════════════════════════════════════
# STATUS & IMAGES
# ═══════════════════════════════════════════════════════════════════════════════

class TestStatus:
    def test_resolved_at_set_on_first_resolution_only(self, store, clock):
        c = store.create(make_draft(), "citizen-a")
        clock.advance(hours=5)
        first = store.set_status(c.id, ComplaintStatus.RESOLVED)
        assert first.resolved_at == clock.now
        clock.advance(hours=2)
        store.set_status(c.id, ComplaintStatus.WORK_IN_PROGRESS)
        again = store.set_status(c.id, ComplaintStatus.RESOLVED)
        assert again.resolved_at == first.resolved_at
        assert again.resolved_at >= again.submitted_at

    def test_backwards_override_allowed(self, store):
        c = resolved(store)
        back = store.set_status(c.id, ComplaintStatus.RECEIVED)
        assert back.status == ComplaintStatus.RECEIVED
        assert back.resolved_at is not None

    def test_unknown_status_rejected(self, store):
        c = store.create(make_draft(), "citizen-a")
        with pytest.raises(DraftValidationError):
            store.set_status(c.id, "Closed")

    def test_progress_image_upserts_per_status(self, store):
        c = store.create(make_draft(), "citizen-a")
        store.attach_image(c.id, "https://img.example.org/p1.jpg", ComplaintStatus.WORK_IN_PROGRESS)
        updated = store.attach_image(c.id, "https://img.example.org/p2.jpg", "Work in Progress")
        assert updated.progress_images == {"Work in Progress": "https://img.example.org/p2.jpg"}
        assert updated.after_image is None
        assert updated.status == ComplaintStatus.RECEIVED

    def test_resolved_context_sets_after_image(self, store):
        c = store.create(make_draft(), "citizen-a")
        updated = store.attach_image(c.id, "https://img.example.org/after.jpg", ComplaintStatus.RESOLVED)
        assert updated.after_image == "https://img.example.org/after.jpg"
        assert updated.progress_images == {}

    def test_empty_image_rejected(self, store):
        c = store.create(make_draft(), "citizen-a")
        with pytest.raises(DraftValidationError):
            store.attach_image(c.id, " ", ComplaintStatus.RESOLVED)


# ═══════════════════════════════════════════════════════════════════════════════
# UPVOTES & COMMENTS
# ═══════════════════════════════════════════════════════════════════════════════

class TestCommunity:
    def test_upvote_toggle_round_trip(self, store):
        c = store.create(make_draft(), "citizen-a")
        up = store.toggle_upvote(c.id, "citizen-b")
        assert up.upvoted_by == ["citizen-b"] and up.upvote_count == 1
        store.toggle_upvote(c.id, "citizen-c")
        down = store.toggle_upvote(c.id, "citizen-b")
        assert down.upvoted_by == ["citizen-c"]
        assert store.toggle_upvote(c.id, "citizen-c").upvoted_by == []

    def test_upvote_requires_user(self, store):
        c = store.create(make_draft(), "citizen-a")
        with pytest.raises(AuthenticationRequiredError):
            store.toggle_upvote(c.id, "")

    def test_add_comment(self, store, clock):
        c = store.create(make_draft(), "citizen-a")
        updated = store.add_comment(c.id, "citizen-b", "  Same here, nearly fell off my bike.  ")
        assert len(updated.comments) == 1
        comment = updated.comments[0]
        assert comment.author_id == "citizen-b"
        assert comment.text == "Same here, nearly fell off my bike."
        assert comment.created_at == clock.now

    def test_empty_comment_rejected(self, store):
        c = store.create(make_draft(), "citizen-a")
        with pytest.raises(DraftValidationError):
            store.add_comment(c.id, "citizen-b", "   ")
        assert store.get(c.id).comments == []

    def test_author_deletes_own_comment(self, store):
        c = store.create(make_draft(), "citizen-a")
        keep = store.add_comment(c.id, "citizen-a", "first").comments[0]
        drop = store.add_comment(c.id, "citizen-b", "second").comments[1]
        after = store.delete_comment(c.id, drop.id, "citizen-b")
        assert [x.id for x in after.comments] == [keep.id]

    def test_non_author_cannot_delete(self, store):
        c = store.create(make_draft(), "citizen-a")
        comment = store.add_comment(c.id, "citizen-b", "mine").comments[0]
        with pytest.raises(PermissionDeniedError):
            store.delete_comment(c.id, comment.id, "citizen-a")
        assert [x.id for x in store.get(c.id).comments] == [comment.id]

    def test_delete_unknown_comment(self, store):
        c = store.create(make_draft(), "citizen-a")
        with pytest.raises(CommentNotFoundError):
            store.delete_comment(c.id, "nope", "citizen-a")


# ═══════════════════════════════════════════════════════════════════════════════
# FEEDBACK
# ═══════════════════════════════════════════════════════════════════════════════

class TestFeedback:
    def test_feedback_on_resolved(self, store):
        c = resolved(store)
        updated = store.submit_feedback(c.id, {"rating": 4, "comment": "Quick fix"})
        assert updated.feedback.rating == 4
        assert updated.feedback.comment == "Quick fix"

    def test_feedback_rejected_before_resolution(self, store):
        c = store.create(make_draft(), "citizen-a")
        store.set_status(c.id, ComplaintStatus.WORK_IN_PROGRESS)
        before = store.get(c.id)
        with pytest.raises(FeedbackNotAllowedError) as exc:
            store.submit_feedback(c.id, {"rating": 5})
        assert exc.value.current_status == "Work in Progress"
        assert store.get(c.id) == before

    def test_only_submitter_may_rate_when_owner_given(self, store):
        c = resolved(store)
        with pytest.raises(PermissionDeniedError):
            store.submit_feedback(c.id, {"rating": 1}, "citizen-b")
        assert store.get(c.id).feedback is None
        updated = store.submit_feedback(c.id, {"rating": 3}, "citizen-a")
        assert updated.feedback.rating == 3

    def test_ownership_checked_before_status(self, store):
        c = store.create(make_draft(), "citizen-a")
        with pytest.raises(PermissionDeniedError) as exc:
            store.submit_feedback(c.id, {"rating": 4}, "citizen-b")
        assert not isinstance(exc.value, FeedbackNotAllowedError)

    def test_feedback_is_a_permission_error(self):
        assert issubclass(FeedbackNotAllowedError, PermissionDeniedError)

    @pytest.mark.parametrize("rating", [0, 6])
    def test_rating_out_of_range(self, store, rating):
        c = resolved(store)
        with pytest.raises(DraftValidationError):
            store.submit_feedback(c.id, {"rating": rating})
        assert store.get(c.id).feedback is None

    def test_second_submission_replaces_first(self, store):
        c = resolved(store)
        store.submit_feedback(c.id, {"rating": 2, "comment": "slow"})
        updated = store.submit_feedback(c.id, {"rating": 5, "comment": "fixed properly in the end"})
        assert updated.feedback.rating == 5
        assert updated.feedback.comment == "fixed properly in the end"


# ═══════════════════════════════════════════════════════════════════════════════
# ACCEPT RECOMMENDATION
# ═══════════════════════════════════════════════════════════════════════════════

class TestAcceptRecommendation:
    def test_applies_and_moves_to_review(self, store):
        c = store.create(make_draft(category="Other"), "citizen-a")
        rec = Recommendation(category="Water Leak", department="Public Works", priority="High",
                             officer={"id": "pw-1", "name": "Omar Haddad"}, rationale="Burst pipe")
        updated = store.accept_recommendation(c.id, rec)
        assert updated.category == ComplaintCategory.WATER_LEAK
        assert updated.department == Department.PUBLIC_WORKS
        assert updated.assigned_officer.id == "pw-1"
        assert updated.status == ComplaintStatus.UNDER_REVIEW

    def test_forces_review_even_when_resolved(self, store):
        c = resolved(store)
        updated = store.accept_recommendation(c.id, {
            "category": "Pothole", "department": "Public Works", "priority": "Low",
            "officer": {"id": "pw-2", "name": "Grace Okafor"}})
        assert updated.status == ComplaintStatus.UNDER_REVIEW
        assert updated.resolved_at == c.resolved_at

    def test_invalid_recommendation_rejected(self, store):
        c = store.create(make_draft(), "citizen-a")
        with pytest.raises(DraftValidationError):
            store.accept_recommendation(c.id, {"category": "Pothole"})
        assert store.get(c.id).status == ComplaintStatus.RECEIVED


# ═══════════════════════════════════════════════════════════════════════════════
# VIEWS & STATISTICS
# ═══════════════════════════════════════════════════════════════════════════════

class TestViews:
    def _three(self, store, clock):
        a = store.create(make_draft(location="Oak Ave"), "citizen-a")
        clock.advance(hours=1)
        b = store.create(make_draft(location="Birch Rd"), "citizen-a")
        clock.advance(hours=1)
        c = store.create(make_draft(location="Cedar Ln"), "citizen-b")
        store.set_status(b.id, ComplaintStatus.UNDER_REVIEW)
        store.set_status(c.id, ComplaintStatus.RESOLVED)
        return a, b, c

    def test_list_newest_first(self, store, clock):
        a, b, c = self._three(store, clock)
        assert [x.id for x in store.list()] == [c.id, b.id, a.id]

    def test_pending_view(self, store, clock):
        a, b, c = self._three(store, clock)
        assert {x.id for x in store.filter_by_status("Pending")} == {a.id, b.id}
        assert [x.id for x in store.filter_by_status(ComplaintStatus.RESOLVED.value)] == [c.id]
        assert len(store.filter_by_status("All")) == 3

    def test_unknown_view(self, store):
        with pytest.raises(DraftValidationError):
            store.filter_by_status("Archived")

    def test_rank_sorts(self, store, clock):
        a, b, c = self._three(store, clock)
        store.toggle_upvote(a.id, "u1")
        store.toggle_upvote(a.id, "u2")
        store.toggle_upvote(b.id, "u1")
        assert [x.id for x in store.rank("upvotes")] == [a.id, b.id, c.id]
        assert [x.id for x in store.rank("recent")] == [c.id, b.id, a.id]
        assert [x.location for x in store.rank("locality")] == ["Birch Rd", "Cedar Ln", "Oak Ave"]
        assert store.rank("priority")[0].id == a.id

    def test_priority_score_decays_with_age(self, store, clock):
        old = store.create(make_draft(), "citizen-a")
        store.toggle_upvote(old.id, "u1")
        clock.advance(days=30)
        new = store.create(make_draft(), "citizen-a")
        assert [x.id for x in store.rank("priority")] == [new.id, old.id]

    def test_statistics(self, store, clock):
        c = store.create(make_draft(category="Garbage"), "citizen-a")
        store.create(make_draft(), "citizen-b")
        clock.advance(hours=5)
        store.set_status(c.id, ComplaintStatus.RESOLVED)
        store.toggle_upvote(c.id, "u1")
        stats = store.statistics()
        assert stats["total_complaints"] == 2
        assert stats["pending_count"] == 1
        assert stats["resolved_count"] == 1
        assert stats["avg_resolution_hours"] == 5.0
        assert stats["category_distribution"]["Garbage"] == 1
        assert stats["category_distribution"]["Pothole"] == 1
        assert stats["top_upvoted"] == [{"id": c.id, "category": "Garbage", "location": "Elm St", "upvotes": 1}]

    def test_statistics_window(self, store, clock):
        store.create(make_draft(), "citizen-a")
        clock.advance(days=10)
        store.create(make_draft(), "citizen-a")
        assert store.statistics(days=7)["total_complaints"] == 1
        assert store.statistics()["total_complaints"] == 2


# ═══════════════════════════════════════════════════════════════════════════════
# PERSISTENCE
# ═══════════════════════════════════════════════════════════════════════════════

class TestPersistence:
    def test_reload_from_memory_backend(self, kv, store):
        c = store.create(make_draft(), "citizen-a")
        store.add_comment(c.id, "citizen-b", "noted")
        reloaded = ComplaintStore(kv)
        assert reloaded.get(c.id) == store.get(c.id)

    def test_reload_from_json_file(self, tmp_path, clock):
        path = tmp_path / "data" / "store.json"
        first = ComplaintStore(JsonFileKeyValueStore(str(path)), clock=clock)
        c = first.create(make_draft(latitude=1.5, longitude=2.5), "citizen-a")
        first.set_status(c.id, ComplaintStatus.RESOLVED)
        second = ComplaintStore(JsonFileKeyValueStore(str(path)))
        again = second.get(c.id)
        assert again.status == ComplaintStatus.RESOLVED
        assert again.resolved_at == clock.now
        assert again.latitude == 1.5

    def test_failed_save_leaves_state_untouched(self, clock):
        kv = FlakyKeyValueStore()
        store = ComplaintStore(kv, clock=clock)
        c = store.create(make_draft(), "citizen-a")
        kv.fail = True
        with pytest.raises(IOError):
            store.set_status(c.id, ComplaintStatus.RESOLVED)
        with pytest.raises(IOError):
            store.create(make_draft(), "citizen-b")
        assert store.get(c.id).status == ComplaintStatus.RECEIVED
        assert store.count() == 1

    def test_failed_create_leaves_no_record_lock(self, clock):
        kv = FlakyKeyValueStore()
        store = ComplaintStore(kv, clock=clock, id_factory=lambda: "complaint-x")
        kv.fail = True
        with pytest.raises(IOError):
            store.create(make_draft(), "citizen-a")
        assert "complaint-x" not in store._record_locks
        with pytest.raises(ComplaintNotFoundError):
            store.toggle_upvote("complaint-x", "citizen-b")
        kv.fail = False
        assert store.create(make_draft(), "citizen-a").id == "complaint-x"
        assert "complaint-x" in store._record_locks

    def test_returned_copies_are_detached(self, store):
        c = store.create(make_draft(), "citizen-a")
        c.upvoted_by.append("intruder")
        assert store.get(c.id).upvoted_by == []

    def test_seed_only_fills_empty_store(self, store):
        assert import_demo_data(store) == len(COMPLAINTS)
        assert import_demo_data(store) == 0
        assert store.get("complaint-1").feedback.rating == 4
        assert store.import_complaints(COMPLAINTS) == 0
