# Citizen Complaint Dispatch Service
# FastAPI + pydantic + OpenAI classification + pluggable key-value persistence

import asyncio
import logging
from typing import List, Optional
from contextlib import asynccontextmanager
from concurrent.futures import ThreadPoolExecutor

import uvicorn
from fastapi import FastAPI, HTTPException, Depends, Header, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import Request
from starlette.middleware.base import BaseHTTPMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from .config import CORS_ORIGINS, RECOMMEND_RATE_LIMIT, SEED_DEMO_DATA, now_utc
from .classifier import build_classifier
from .errors import CivicDeskError, DraftValidationError
from .geocoding import ReverseGeocoder
from .models import (
    AnalyticsResponse, CommentCreate, CommunitySort, Complaint, ComplaintDraft, ComplaintStatus,
    Feedback, ImageAttachment, Officer, PhotoCategorizeRequest, PhotoCategorizeResponse,
    Recommendation, RecommendationRequest, ReverseGeocodeResponse, StatusView, UserRole,
)
from .persistence import build_kv_store
from .seed import OFFICERS, USERS_BY_ID, import_demo_data
from .store import ComplaintStore
from .suggestion import SuggestionEngine, check_recommendation, draft_from_complaint

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# App & Globals
# ---------------------------------------------------------------------------
store: Optional[ComplaintStore] = None
engine: Optional[SuggestionEngine] = None
geocoder: Optional[ReverseGeocoder] = None
roster: List[Officer] = list(OFFICERS)
executor = ThreadPoolExecutor(max_workers=10)


@asynccontextmanager
async def lifespan(app: FastAPI):
    global store, engine, geocoder
    kv = build_kv_store()
    store = ComplaintStore(kv)
    if SEED_DEMO_DATA:
        import_demo_data(store)
    engine = SuggestionEngine(build_classifier())
    geocoder = ReverseGeocoder()
    logger.info("Complaint service ready: %d complaints, %d officers", store.count(), len(roster))
    yield
    close = getattr(kv, "close", None)
    if close:
        close()


app = FastAPI(title="CivicDesk - Citizen Complaint Dispatch", lifespan=lifespan)
limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "geolocation=(self), camera=(self), microphone=(self)"
        return response

app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CivicDeskError)
async def civicdesk_error_handler(request: Request, exc: CivicDeskError):
    body = {"detail": exc.detail}
    if isinstance(exc, DraftValidationError):
        body["errors"] = exc.errors
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=body)

# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
async def get_store() -> ComplaintStore:
    if store is None:
        raise HTTPException(status_code=503, detail="Complaint store not initialized")
    return store

async def get_engine() -> SuggestionEngine:
    if engine is None:
        raise HTTPException(status_code=503, detail="Suggestion engine not initialized")
    return engine

async def get_geocoder() -> ReverseGeocoder:
    return geocoder or ReverseGeocoder()

async def get_roster() -> List[Officer]:
    return list(roster)

# ---------------------------------------------------------------------------
# Mocked role switch (no credentials): X-User-Id picks the user, X-User-Role
# overrides the role the demo user would otherwise have.
# ---------------------------------------------------------------------------
def _user_from_headers(user_id: Optional[str], role: Optional[UserRole]) -> Optional[dict]:
    if not user_id:
        return None
    known = USERS_BY_ID.get(user_id)
    if role is None:
        role = UserRole(known["role"]) if known else UserRole.CITIZEN
    return {"id": user_id, "name": known["name"] if known else user_id, "role": role.value}

async def get_current_user(x_user_id: Optional[str] = Header(None),
                           x_user_role: Optional[UserRole] = Header(None)):
    user = _user_from_headers(x_user_id, x_user_role)
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user

def require_role(*roles):
    async def role_checker(user=Depends(get_current_user)):
        if user["role"] not in roles:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user
    return role_checker

async def run_sync(func, *args):
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(executor, func, *args)

# ---------------------------------------------------------------------------
# COMPLAINT ENDPOINTS
# ---------------------------------------------------------------------------
@app.post("/complaints", response_model=Complaint)
async def create_complaint(draft: ComplaintDraft, user=Depends(get_current_user),
                           store: ComplaintStore = Depends(get_store)):
    return await run_sync(store.create, draft, user["id"])

@app.get("/complaints", response_model=List[Complaint])
async def list_complaints(view: StatusView = StatusView.ALL,
                          limit: int = Query(100, ge=1, le=500),
                          user=Depends(get_current_user),
                          store: ComplaintStore = Depends(get_store)):
    complaints = await run_sync(store.filter_by_status, view)
    # Citizens only see their own submissions here; the community feed is public
    if user["role"] == UserRole.CITIZEN.value:
        complaints = [c for c in complaints if c.submitter_id == user["id"]]
    return complaints[:limit]

@app.get("/complaints/{complaint_id}", response_model=Complaint)
async def get_complaint(complaint_id: str, user=Depends(get_current_user),
                        store: ComplaintStore = Depends(get_store)):
    return await run_sync(store.get, complaint_id)

@app.put("/complaints/{complaint_id}/status", response_model=Complaint)
async def update_status(complaint_id: str, new_status: ComplaintStatus,
                        user=Depends(require_role(UserRole.ADMIN.value)),
                        store: ComplaintStore = Depends(get_store)):
    return await run_sync(store.set_status, complaint_id, new_status)

@app.post("/complaints/{complaint_id}/images", response_model=Complaint)
async def attach_image(complaint_id: str, attachment: ImageAttachment,
                       user=Depends(require_role(UserRole.ADMIN.value)),
                       store: ComplaintStore = Depends(get_store)):
    return await run_sync(store.attach_image, complaint_id, attachment.image, attachment.status_context)

@app.post("/complaints/{complaint_id}/upvote", response_model=Complaint)
async def toggle_upvote(complaint_id: str, user=Depends(get_current_user),
                        store: ComplaintStore = Depends(get_store)):
    return await run_sync(store.toggle_upvote, complaint_id, user["id"])

@app.post("/complaints/{complaint_id}/comments", response_model=Complaint)
async def add_comment(complaint_id: str, comment: CommentCreate, user=Depends(get_current_user),
                      store: ComplaintStore = Depends(get_store)):
    return await run_sync(store.add_comment, complaint_id, user["id"], comment.text)

@app.delete("/complaints/{complaint_id}/comments/{comment_id}", response_model=Complaint)
async def delete_comment(complaint_id: str, comment_id: str, user=Depends(get_current_user),
                         store: ComplaintStore = Depends(get_store)):
    return await run_sync(store.delete_comment, complaint_id, comment_id, user["id"])

@app.post("/complaints/{complaint_id}/feedback", response_model=Complaint)
async def submit_feedback(complaint_id: str, feedback: Feedback, user=Depends(get_current_user),
                          store: ComplaintStore = Depends(get_store)):
    # Only the citizen who filed the complaint can rate it; admins can rate any
    owner = user["id"] if user["role"] == UserRole.CITIZEN.value else None
    return await run_sync(store.submit_feedback, complaint_id, feedback, owner)

# ---------------------------------------------------------------------------
# DISPATCH ENDPOINTS
# ---------------------------------------------------------------------------
@app.post("/complaints/{complaint_id}/recommendation", response_model=Recommendation)
@limiter.limit(RECOMMEND_RATE_LIMIT)
async def recommend_for_complaint(request: Request, complaint_id: str,
                                  user=Depends(require_role(UserRole.ADMIN.value)),
                                  store: ComplaintStore = Depends(get_store),
                                  engine: SuggestionEngine = Depends(get_engine),
                                  officers: List[Officer] = Depends(get_roster)):
    complaint = await run_sync(store.get, complaint_id)
    return await engine.recommend(draft_from_complaint(complaint), officers)

@app.put("/complaints/{complaint_id}/recommendation", response_model=Complaint)
async def accept_recommendation(complaint_id: str, recommendation: Recommendation,
                                user=Depends(require_role(UserRole.ADMIN.value)),
                                store: ComplaintStore = Depends(get_store),
                                officers: List[Officer] = Depends(get_roster)):
    recommendation = check_recommendation(recommendation, officers)
    return await run_sync(store.accept_recommendation, complaint_id, recommendation)

@app.post("/recommendations", response_model=Recommendation)
@limiter.limit(RECOMMEND_RATE_LIMIT)
async def recommend_for_draft(request: Request, req: RecommendationRequest,
                              user=Depends(require_role(UserRole.ADMIN.value)),
                              engine: SuggestionEngine = Depends(get_engine),
                              officers: List[Officer] = Depends(get_roster)):
    return await engine.recommend(req, req.officers if req.officers is not None else officers)

@app.post("/categorize", response_model=PhotoCategorizeResponse)
@limiter.limit(RECOMMEND_RATE_LIMIT)
async def categorize_photo(request: Request, req: PhotoCategorizeRequest,
                           user=Depends(get_current_user),
                           engine: SuggestionEngine = Depends(get_engine)):
    return PhotoCategorizeResponse(category=await engine.categorize_photo(req.photo))

@app.get("/officers", response_model=List[Officer])
async def list_officers(user=Depends(require_role(UserRole.ADMIN.value)),
                        officers: List[Officer] = Depends(get_roster)):
    return officers

# ---------------------------------------------------------------------------
# COMMUNITY & ANALYTICS
# ---------------------------------------------------------------------------
@app.get("/community", response_model=List[Complaint])
async def community_feed(sort: CommunitySort = CommunitySort.PRIORITY,
                         limit: int = Query(50, ge=1, le=200),
                         store: ComplaintStore = Depends(get_store)):
    complaints = await run_sync(store.rank, sort)
    return complaints[:limit]

@app.get("/analytics", response_model=AnalyticsResponse)
async def get_analytics(days: Optional[int] = Query(None, ge=1, le=365),
                        user=Depends(require_role(UserRole.ADMIN.value)),
                        store: ComplaintStore = Depends(get_store)):
    return AnalyticsResponse(**await run_sync(store.statistics, days))

# ---------------------------------------------------------------------------
# LOCATION
# ---------------------------------------------------------------------------
@app.get("/location/reverse", response_model=ReverseGeocodeResponse)
async def reverse_geocode(lat: float = Query(..., ge=-90, le=90),
                          lon: float = Query(..., ge=-180, le=180),
                          geocoder: ReverseGeocoder = Depends(get_geocoder)):
    location, resolved = await geocoder.reverse(lat, lon)
    return ReverseGeocodeResponse(latitude=lat, longitude=lon, location=location, resolved=resolved)

# ---------------------------------------------------------------------------
# HEALTH
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return {"status": "healthy", "system": "CivicDesk Complaint Dispatch",
            "timestamp": now_utc()}


def main():
    uvicorn.run(app, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
