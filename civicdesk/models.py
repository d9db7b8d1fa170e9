# Enums and pydantic models shared by the suggestion engine, the store, and the API

from datetime import datetime
from typing import List, Optional, Dict
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class ComplaintCategory(str, Enum):
    GARBAGE = "Garbage"
    POTHOLE = "Pothole"
    TRAFFIC_LIGHT = "Traffic Light"
    GRAFFITI = "Graffiti"
    WATER_LEAK = "Water Leak"
    OTHER = "Other"

class ComplaintStatus(str, Enum):
    RECEIVED = "Received"
    UNDER_REVIEW = "Under Review"
    WORK_IN_PROGRESS = "Work in Progress"
    RESOLVED = "Resolved"

class Department(str, Enum):
    SANITATION = "Sanitation"
    PUBLIC_WORKS = "Public Works"
    TRANSPORTATION = "Transportation"
    PARKS_AND_REC = "Parks & Rec"

class Priority(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"

class UserRole(str, Enum):
    CITIZEN = "citizen"
    ADMIN = "admin"

class StatusView(str, Enum):
    ALL = "All"
    PENDING = "Pending"
    RECEIVED = "Received"
    UNDER_REVIEW = "Under Review"
    WORK_IN_PROGRESS = "Work in Progress"
    RESOLVED = "Resolved"

class CommunitySort(str, Enum):
    PRIORITY = "priority"
    UPVOTES = "upvotes"
    RECENT = "recent"
    LOCALITY = "locality"

STATUS_ORDER = list(ComplaintStatus)
PENDING_STATUSES = (ComplaintStatus.RECEIVED, ComplaintStatus.UNDER_REVIEW)

def status_rank(status: ComplaintStatus) -> int:
    return STATUS_ORDER.index(status)

def parse_category(value) -> Optional[ComplaintCategory]:
    """Return the enum member matching *value* (case-insensitive), or None."""
    if not isinstance(value, str):
        return None
    needle = value.strip().lower()
    for member in ComplaintCategory:
        if member.value.lower() == needle:
            return member
    return None

def parse_priority(value) -> Optional[Priority]:
    if not isinstance(value, str):
        return None
    needle = value.strip().lower()
    for member in Priority:
        if member.value.lower() == needle:
            return member
    return None

# ---------------------------------------------------------------------------
# Officers & recommendations
# ---------------------------------------------------------------------------
class Officer(BaseModel):
    id: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., max_length=200)
    department: Department
    location: str = Field(..., max_length=200)
    active_cases: int = Field(0, ge=0)

class OfficerRef(BaseModel):
    id: str
    name: str

class Recommendation(BaseModel):
    category: ComplaintCategory
    department: Department
    priority: Priority
    officer: OfficerRef
    rationale: str = ""

# ---------------------------------------------------------------------------
# Complaints
# ---------------------------------------------------------------------------
class ComplaintDraft(BaseModel):
    category: ComplaintCategory
    description: str = Field(..., min_length=10, max_length=5000)
    location: str = Field(..., min_length=3, max_length=500)
    photos: List[str] = Field(..., min_length=1, max_length=3)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)

    @field_validator('photos')
    @classmethod
    def validate_photos(cls, v):
        if any(not isinstance(p, str) or not p.strip() for p in v):
            raise ValueError("Photos must be non-empty image URLs or data URIs")
        return v

    @model_validator(mode='after')
    def check_coordinates_pair(self):
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be provided together")
        return self

class Comment(BaseModel):
    id: str
    author_id: str
    text: str
    created_at: datetime

class Feedback(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field("", max_length=2000)

class Complaint(BaseModel):
    id: str
    submitter_id: str
    category: ComplaintCategory
    description: str
    location: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    status: ComplaintStatus = ComplaintStatus.RECEIVED
    submitted_at: datetime
    resolved_at: Optional[datetime] = None
    before_images: List[str] = Field(default_factory=list)
    progress_images: Dict[str, str] = Field(default_factory=dict)
    after_image: Optional[str] = None
    upvoted_by: List[str] = Field(default_factory=list)
    comments: List[Comment] = Field(default_factory=list)
    feedback: Optional[Feedback] = None
    department: Optional[Department] = None
    assigned_officer: Optional[OfficerRef] = None

    @property
    def upvote_count(self) -> int:
        return len(self.upvoted_by)

# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------
class CommentCreate(BaseModel):
    text: str = Field(..., min_length=1, max_length=2000)

class ImageAttachment(BaseModel):
    image: str = Field(..., min_length=1)
    status_context: ComplaintStatus

class RecommendationRequest(BaseModel):
    description: str = Field(..., min_length=1, max_length=5000)
    location: str = Field(..., min_length=1, max_length=500)
    photo: Optional[str] = None
    officers: Optional[List[Officer]] = None

class PhotoCategorizeRequest(BaseModel):
    photo: str = Field(..., min_length=1)

class PhotoCategorizeResponse(BaseModel):
    category: ComplaintCategory

class AnalyticsResponse(BaseModel):
    total_complaints: int
    pending_count: int = 0
    resolved_count: int = 0
    avg_resolution_hours: float = 0.0
    status_distribution: Dict[str, int] = Field(default_factory=dict)
    category_distribution: Dict[str, int] = Field(default_factory=dict)
    top_upvoted: List[Dict[str, object]] = Field(default_factory=list)

class ReverseGeocodeResponse(BaseModel):
    latitude: float
    longitude: float
    location: str
    resolved: bool
