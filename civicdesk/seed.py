# Seed data: demo users, the officer roster, and sample complaints
#
# Coverage:
#   Statuses   : every status, two Resolved (one with feedback on each)
#   Categories : all but Other
#   Special    : progress + after images, upvotes, comments, coordinates

import logging
from datetime import datetime, timezone

from .models import Officer

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Users (mocked role switch only, no credentials)
# ---------------------------------------------------------------------------
USERS = [
    {"id": "user-1", "name": "Kavya Menon", "email": "kavya.menon@example.com", "role": "citizen"},
    {"id": "user-2", "name": "Farhan Qureshi", "email": "farhan.qureshi@example.com", "role": "admin"},
    {"id": "user-3", "name": "Lena Duarte", "email": "lena.duarte@example.com", "role": "citizen"},
]

USERS_BY_ID = {u["id"]: u for u in USERS}

# ---------------------------------------------------------------------------
# Officer roster
# ---------------------------------------------------------------------------
OFFICERS = [
    Officer(id="officer-1", name="Dev Malhotra", department="Sanitation", location="District 1", active_cases=3),
    Officer(id="officer-2", name="Ritu Bansal", department="Sanitation", location="District 2", active_cases=5),
    Officer(id="officer-3", name="Omar Haddad", department="Public Works", location="District 1", active_cases=2),
    Officer(id="officer-4", name="Grace Okafor", department="Public Works", location="District 3", active_cases=4),
    Officer(id="officer-5", name="Tomas Lindqvist", department="Transportation", location="City Wide", active_cases=6),
    Officer(id="officer-6", name="Anjali Rao", department="Parks & Rec", location="District 2", active_cases=1),
]

# ---------------------------------------------------------------------------
# Complaints
# ---------------------------------------------------------------------------
def _ts(value: str) -> datetime:
    return datetime.fromisoformat(value).replace(tzinfo=timezone.utc)

_IMG = "https://images.example.org/civicdesk/"

COMPLAINTS = [
    {"id": "complaint-1", "submitter_id": "user-1", "category": "Garbage",
     "description": "Bins at the corner of Main St and 1st Ave have not been emptied for over a week "
                    "and are overflowing onto the footpath, attracting rats.",
     "location": "Main St & 1st Ave", "latitude": 28.6139, "longitude": 77.2090,
     "status": "Resolved", "submitted_at": _ts("2024-07-15T09:30:00"),
     "resolved_at": _ts("2024-07-18T14:00:00"),
     "before_images": [_IMG + "garbage-main-st-before.jpg"],
     "after_image": _IMG + "garbage-main-st-after.jpg",
     "feedback": {"rating": 4, "comment": "Picked up quickly once someone was assigned."},
     "upvoted_by": ["user-1", "user-2"],
     "comments": [
         {"id": "comment-1-1", "author_id": "user-2", "text": "Same problem every summer here.",
          "created_at": _ts("2024-07-15T10:00:00")},
         {"id": "comment-1-2", "author_id": "user-1", "text": "Hope it gets sorted soon.",
          "created_at": _ts("2024-07-15T11:30:00")},
     ]},

    {"id": "complaint-2", "submitter_id": "user-1", "category": "Pothole",
     "description": "Deep pothole on Elm Street in front of the public library. Cyclists have to swerve "
                    "into traffic to avoid it.",
     "location": "Elm Street, near Public Library", "latitude": 28.6145, "longitude": 77.2105,
     "status": "Work in Progress", "submitted_at": _ts("2024-07-20T11:00:00"),
     "before_images": [_IMG + "pothole-elm-before.jpg"],
     "progress_images": {"Work in Progress": _IMG + "pothole-elm-progress.jpg"},
     "department": "Public Works", "assigned_officer": {"id": "officer-3", "name": "Omar Haddad"},
     "upvoted_by": ["user-2"], "comments": []},

    {"id": "complaint-3", "submitter_id": "user-3", "category": "Graffiti",
     "description": "Offensive graffiti sprayed across the wall of the children's play area in Central Park.",
     "location": "Central Park", "latitude": 28.6128, "longitude": 77.2160,
     "status": "Under Review", "submitted_at": _ts("2024-07-22T18:45:00"),
     "before_images": [_IMG + "graffiti-central-park.jpg"],
     "department": "Parks & Rec", "assigned_officer": {"id": "officer-6", "name": "Anjali Rao"},
     "upvoted_by": [],
     "comments": [
         {"id": "comment-3-1", "author_id": "user-2", "text": "Flagged for the parks crew.",
          "created_at": _ts("2024-07-22T19:00:00")},
     ]},

    {"id": "complaint-4", "submitter_id": "user-3", "category": "Traffic Light",
     "description": "The signal at Oak and Pine is stuck on red for one direction and the pedestrian "
                    "crossing light does not come on.",
     "location": "Intersection of Oak and Pine", "latitude": 28.6150, "longitude": 77.2120,
     "status": "Received", "submitted_at": _ts("2024-07-23T08:00:00"),
     "before_images": [_IMG + "signal-oak-pine.jpg"],
     "upvoted_by": ["user-1"], "comments": []},

    {"id": "complaint-5", "submitter_id": "user-1", "category": "Water Leak",
     "description": "Water has been running out of a cracked main under the sidewalk on Maple Avenue for hours.",
     "location": "Maple Avenue", "latitude": 28.6100, "longitude": 77.2180,
     "status": "Resolved", "submitted_at": _ts("2024-07-10T15:20:00"),
     "resolved_at": _ts("2024-07-11T10:00:00"),
     "before_images": [_IMG + "leak-maple-before.jpg"],
     "after_image": _IMG + "leak-maple-after.jpg",
     "feedback": {"rating": 5, "comment": "Fixed overnight, thank you!"},
     "upvoted_by": [], "comments": []},
]


def import_demo_data(store) -> int:
    """Load the sample complaints into an empty store. Returns how many were added."""
    if store.count():
        logger.info("Store already has %d complaints; skipping seed", store.count())
        return 0
    added = store.import_complaints(COMPLAINTS)
    logger.info("Seeded %d demo complaints", added)
    return added
