# Classification capability: the external model that reads a complaint and
# suggests a category and priority. Two backends share one contract:
#
#   classify(description, location, photo, officers) -> {"suggestedCategory", "recommendedDepartment",
#                                                         "priority", "assignedOfficer", "reasoning"}
#   categorize_image(photo)                          -> {"suggestedCategory"}
#
# Raw responses are checked against DispatchResponse / ImageCategoryResponse
# by the suggestion engine before anything reaches domain logic.

import re
import json
import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

import openai as openai_mod
from openai import AsyncOpenAI
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import (
    OPENAI_API_KEY, OPENAI_MODEL, CLASSIFIER_BACKEND, CLASSIFIER_MAX_RETRIES,
)
from .errors import ClassificationError
from .models import ComplaintCategory, Department, Officer, Priority

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------
class AssignedOfficer(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str
    name: str = ""

class DispatchResponse(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)
    suggested_category: Optional[str] = Field(None, alias="suggestedCategory")
    recommended_department: Optional[str] = Field(None, alias="recommendedDepartment")
    # Any JSON value; unparseable ones become Medium in the suggestion engine
    priority: Any = None
    assigned_officer: Optional[AssignedOfficer] = Field(None, alias="assignedOfficer")
    reasoning: Optional[str] = None

class ImageCategoryResponse(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)
    suggested_category: Optional[str] = Field(None, alias="suggestedCategory")


def validate_dispatch_response(raw) -> DispatchResponse:
    if not isinstance(raw, dict):
        raise ClassificationError("Classification response is not a JSON object")
    try:
        return DispatchResponse.model_validate(raw)
    except ValidationError as e:
        raise ClassificationError(f"Classification response failed validation: {e.error_count()} error(s)") from e


def validate_image_response(raw) -> ImageCategoryResponse:
    if not isinstance(raw, dict):
        raise ClassificationError("Image categorization response is not a JSON object")
    try:
        return ImageCategoryResponse.model_validate(raw)
    except ValidationError as e:
        raise ClassificationError("Image categorization response failed validation") from e

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def truncate_text(text: str, max_chars: int = 3000) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."

CATEGORY_CHOICES = ", ".join(f'"{c.value}"' for c in ComplaintCategory)
DEPARTMENT_CHOICES = ", ".join(f'"{d.value}"' for d in Department)
PRIORITY_CHOICES = ", ".join(f'"{p.value}"' for p in Priority)

DEPARTMENT_GUIDE = (
    "Sanitation=garbage collection/street cleaning/waste management, "
    "Public Works=potholes/road repairs/water leaks/public infrastructure maintenance, "
    "Transportation=traffic lights/road signs/public transport, "
    "Parks & Rec=public parks/graffiti on public property."
)

# ---------------------------------------------------------------------------
# OpenAI backend
# ---------------------------------------------------------------------------
class OpenAIClassifier:
    def __init__(self, client: Optional[AsyncOpenAI] = None, model: str = OPENAI_MODEL,
                 max_retries: int = CLASSIFIER_MAX_RETRIES):
        self.client = client or AsyncOpenAI(api_key=OPENAI_API_KEY)
        self.model = model
        self.max_retries = max_retries

    async def _chat_json(self, messages: list) -> Dict:
        for attempt in range(self.max_retries):
            try:
                resp = await self.client.chat.completions.create(
                    model=self.model, messages=messages,
                    response_format={"type": "json_object"})
                content = resp.choices[0].message.content
                break
            except (openai_mod.RateLimitError, openai_mod.APIConnectionError) as e:
                logger.warning("OpenAI retry %d: %s", attempt + 1, e)
                if attempt == self.max_retries - 1:
                    raise ClassificationError("Classification model unavailable") from e
                await asyncio.sleep(2 ** attempt)
            except openai_mod.OpenAIError as e:
                logger.error("OpenAI error: %s", e)
                raise ClassificationError("Classification model error") from e
        else:
            raise ClassificationError("Classification model unavailable")
        if not content or not content.strip():
            raise ClassificationError("Empty response from classification model")
        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            raise ClassificationError("Classification model returned invalid JSON") from e

    @staticmethod
    def _user_message(prompt: str, photo: Optional[str]) -> dict:
        if not photo:
            return {"role": "user", "content": prompt}
        return {"role": "user", "content": [
            {"type": "text", "text": prompt},
            {"type": "image_url", "image_url": {"url": photo}},
        ]}

    async def classify(self, description: str, location: str, photo: Optional[str] = None,
                       officers: Sequence[Officer] = ()) -> Dict:
        roster = "\n".join(
            f"- ID: {o.id}, Name: {o.name}, Department: {o.department.value}, "
            f"Location: {o.location}, Active Cases: {o.active_cases}" for o in officers) or "- (none)"
        prompt = (
            "You are a complaint dispatcher for a city government. Analyze this citizen complaint "
            "(description, location, and photo if attached).\n\n"
            f'Description: "{truncate_text(description, 2800)}"\nLocation: "{truncate_text(location, 300)}"\n\n'
            f"Available officers:\n{roster}\n\n"
            "Return a JSON object with exactly these keys:\n"
            f'- "suggestedCategory": one of [{CATEGORY_CHOICES}]\n'
            f'- "recommendedDepartment": one of [{DEPARTMENT_CHOICES}]\n'
            f'- "priority": one of [{PRIORITY_CHOICES}]\n'
            '- "assignedOfficer": {"id": ..., "name": ...} picked from the officers above\n'
            '- "reasoning": one or two sentences\n\n'
            f"Department guide: {DEPARTMENT_GUIDE}\n"
            "Priority guide: High=safety or health risk (hazard, danger, exposed wires or rebar, "
            "overflowing waste), Medium=standard issue, Low=minor or cosmetic.\n"
            "Officer rules, in order: same department as recommended; closest location to the complaint; "
            "fewest active cases."
        )
        return await self._chat_json([self._user_message(prompt, photo)])

    async def categorize_image(self, photo: str) -> Dict:
        prompt = (
            "Categorize the citizen complaint shown in this photo. Return a JSON object with one key, "
            f'"suggestedCategory", set to one of [{CATEGORY_CHOICES}]. If you are unsure, use "Other".'
        )
        return await self._chat_json([self._user_message(prompt, photo)])

# ---------------------------------------------------------------------------
# Offline keyword backend
# ---------------------------------------------------------------------------
CATEGORY_KEYWORDS = {
    ComplaintCategory.TRAFFIC_LIGHT: ["traffic light", "traffic signal", "signal", "stoplight", "streetlight"],
    ComplaintCategory.WATER_LEAK: ["leak", "burst", "pipe", "water main", "waterlog", "flooding"],
    ComplaintCategory.POTHOLE: ["pothole", "crack", "sinkhole", "road damage", "hole", "rebar"],
    ComplaintCategory.GRAFFITI: ["graffiti", "spray paint", "spray-paint", "vandal"],
    ComplaintCategory.GARBAGE: ["garbage", "trash", "waste", "litter", "dustbin", "rubbish", "dump"],
}

HIGH_PRIORITY_SIGNALS = [
    "hazard", "danger", "exposed", "overflow", "unsafe", "injur", "accident", "emergency",
    "live wire", "sparking", "sewage", "toxic", "collapse", "fire", "risk",
]
LOW_PRIORITY_SIGNALS = ["minor", "cosmetic", "small", "slight", "faded", "aesthetic", "little"]


def _count_hits(text: str, keywords: List[str]) -> int:
    return sum(1 for k in keywords if re.search(r"\b" + re.escape(k), text))


class KeywordClassifier:
    """Deterministic stand-in for the model: substring signals over the description."""

    @staticmethod
    def guess_category(text: str) -> ComplaintCategory:
        text = (text or "").lower()
        best, best_hits = ComplaintCategory.OTHER, 0
        for category, keywords in CATEGORY_KEYWORDS.items():
            hits = _count_hits(text, keywords)
            if hits > best_hits:
                best, best_hits = category, hits
        return best

    @staticmethod
    def guess_priority(text: str) -> Priority:
        text = (text or "").lower()
        if _count_hits(text, HIGH_PRIORITY_SIGNALS):
            return Priority.HIGH
        if _count_hits(text, LOW_PRIORITY_SIGNALS):
            return Priority.LOW
        return Priority.MEDIUM

    async def classify(self, description: str, location: str, photo: Optional[str] = None,
                       officers: Sequence[Officer] = ()) -> Dict:
        category = self.guess_category(description)
        priority = self.guess_priority(description)
        return {
            "suggestedCategory": category.value,
            "priority": priority.value,
            "reasoning": f"Keyword match suggests {category.value} with {priority.value} priority.",
        }

    async def categorize_image(self, photo: str) -> Dict:
        # Only hosted images carry anything readable (the URL path); data URIs stay Other
        if photo and not photo.startswith("data:"):
            return {"suggestedCategory": self.guess_category(re.sub(r"[-_/.]", " ", photo)).value}
        return {"suggestedCategory": ComplaintCategory.OTHER.value}

# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------
def build_classifier(backend: str = CLASSIFIER_BACKEND):
    if backend == "openai":
        return OpenAIClassifier()
    if backend == "keyword":
        return KeywordClassifier()
    if OPENAI_API_KEY:
        return OpenAIClassifier()
    logger.warning("OPENAI_API_KEY not set; using keyword classifier")
    return KeywordClassifier()
