# Suggestion engine: turns one complaint draft plus the officer roster into a
# dispatch recommendation (category, department, priority, officer, rationale).
#
# Stages run in order and never backtrack:
#   1. categorize  - classification capability, unknown labels become Other
#   2. department  - fixed category -> department table
#   3. priority    - classification capability, anything unparseable becomes Medium
#   4. officer     - same department, then location closeness, then fewest
#                    active cases, then roster order

import re
import asyncio
import logging
from enum import IntEnum
from typing import List, Sequence, Tuple

from .config import CLASSIFIER_TIMEOUT_SECONDS
from .classifier import validate_dispatch_response, validate_image_response
from .errors import ClassificationError, DraftValidationError, NoEligibleOfficerError, RecommendationError
from .models import (
    Complaint, ComplaintCategory, Department, Officer, OfficerRef, Priority,
    Recommendation, RecommendationRequest, parse_category, parse_priority,
)

logger = logging.getLogger(__name__)

DEPARTMENT_BY_CATEGORY = {
    ComplaintCategory.GARBAGE: Department.SANITATION,
    ComplaintCategory.POTHOLE: Department.PUBLIC_WORKS,
    ComplaintCategory.WATER_LEAK: Department.PUBLIC_WORKS,
    ComplaintCategory.TRAFFIC_LIGHT: Department.TRANSPORTATION,
    ComplaintCategory.GRAFFITI: Department.PARKS_AND_REC,
    ComplaintCategory.OTHER: Department.PUBLIC_WORKS,
}

# ---------------------------------------------------------------------------
# Location closeness
# ---------------------------------------------------------------------------
class Closeness(IntEnum):
    NONE = 0
    OVERLAP = 1
    CONTAINS = 2
    EXACT = 3

STREET_SUFFIXES = {
    "street": "st", "avenue": "ave", "road": "rd", "boulevard": "blvd", "lane": "ln",
    "drive": "dr", "place": "pl", "court": "ct", "highway": "hwy", "square": "sq",
}
GENERIC_TOKENS = {
    "st", "ave", "rd", "blvd", "ln", "dr", "pl", "ct", "hwy", "sq",
    "and", "the", "of", "near", "at", "on", "in", "by", "opposite", "behind", "corner",
    "district", "ward", "zone", "sector", "area", "city", "public",
}
CITY_WIDE_LABELS = {"city wide", "citywide", "all", "all districts"}


def normalize_location(label: str) -> List[str]:
    text = (label or "").lower().replace("&", " and ")
    text = re.sub(r"[^a-z0-9\s]", " ", text)
    return [STREET_SUFFIXES.get(tok, tok) for tok in text.split()]


def _contains_run(haystack: List[str], needle: List[str]) -> bool:
    width = len(needle)
    return any(haystack[i:i + width] == needle for i in range(len(haystack) - width + 1))


def location_closeness(officer_location: str, complaint_location: str) -> Closeness:
    officer_tokens = normalize_location(officer_location)
    complaint_tokens = normalize_location(complaint_location)
    if not officer_tokens or not complaint_tokens:
        return Closeness.NONE
    if officer_tokens == complaint_tokens:
        return Closeness.EXACT
    if _contains_run(complaint_tokens, officer_tokens) or _contains_run(officer_tokens, complaint_tokens):
        return Closeness.CONTAINS
    if " ".join(officer_tokens) in CITY_WIDE_LABELS:
        return Closeness.OVERLAP
    # Bare numbers (house numbers, district numbers, coordinates) only count inside a matched run
    significant = {
        tok for tok in (set(officer_tokens) & set(complaint_tokens)) - GENERIC_TOKENS
        if not tok.isdigit()
    }
    return Closeness.OVERLAP if significant else Closeness.NONE


def select_officer(officers: Sequence[Officer], department: Department,
                   complaint_location: str) -> Tuple[Officer, Closeness]:
    """Pick the officer for *department*: closest label, then fewest cases, then roster order."""
    ranked = [
        (location_closeness(o.location, complaint_location), o.active_cases, index, o)
        for index, o in enumerate(officers) if o.department == department
    ]
    if not ranked:
        raise NoEligibleOfficerError(department.value)
    closeness, _, _, officer = min(ranked, key=lambda r: (-r[0], r[1], r[2]))
    return officer, closeness


def check_recommendation(recommendation: Recommendation, officers: Sequence[Officer]) -> Recommendation:
    """Reject an accepted recommendation whose department or officer the rules would never produce.

    Returns a copy carrying the officer's name as it appears on the roster.
    """
    errors = {}
    expected = DEPARTMENT_BY_CATEGORY[recommendation.category]
    if recommendation.department != expected:
        errors["department"] = (f"{recommendation.category.value} complaints go to {expected.value}, "
                                f"not {recommendation.department.value}")
    officer = next((o for o in officers if o.id == recommendation.officer.id), None)
    if officer is None:
        errors["officer"] = f"Officer {recommendation.officer.id!r} is not on the roster"
    elif officer.department != recommendation.department:
        errors["officer"] = f"{officer.name} works in {officer.department.value}, not {recommendation.department.value}"
    if errors:
        logger.warning("Rejected recommendation for officer %s: %s", recommendation.officer.id, errors)
        raise DraftValidationError(errors, detail="Recommendation validation failed")
    return recommendation.model_copy(update={"officer": OfficerRef(id=officer.id, name=officer.name)})

# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------
def draft_from_complaint(complaint: Complaint) -> RecommendationRequest:
    return RecommendationRequest(
        description=complaint.description, location=complaint.location,
        photo=complaint.before_images[0] if complaint.before_images else None)


_CLOSENESS_PHRASES = {
    Closeness.EXACT: "covers exactly",
    Closeness.CONTAINS: "covers",
    Closeness.OVERLAP: "is near",
    Closeness.NONE: "has no closer match for",
}


class SuggestionEngine:
    def __init__(self, classifier, timeout: float = CLASSIFIER_TIMEOUT_SECONDS):
        self.classifier = classifier
        self.timeout = timeout

    async def _call_classifier(self, draft: RecommendationRequest, officers: Sequence[Officer]):
        try:
            raw = await asyncio.wait_for(
                self.classifier.classify(draft.description, draft.location, draft.photo, officers),
                timeout=self.timeout)
            return validate_dispatch_response(raw)
        except asyncio.TimeoutError as e:
            logger.error("Classification timed out after %.1fs", self.timeout)
            raise RecommendationError() from e
        except ClassificationError as e:
            logger.error("Classification failed: %s", e.detail)
            raise RecommendationError() from e
        except Exception as e:
            logger.error("Classification error: %s", e)
            raise RecommendationError() from e

    async def recommend(self, draft: RecommendationRequest, officers: Sequence[Officer]) -> Recommendation:
        if not officers:
            raise NoEligibleOfficerError()
        response = await self._call_classifier(draft, officers)

        category = parse_category(response.suggested_category)
        if category is None:
            logger.warning("Unrecognized category %r; using Other", response.suggested_category)
            category = ComplaintCategory.OTHER
        department = DEPARTMENT_BY_CATEGORY[category]

        priority = parse_priority(response.priority)
        if priority is None:
            logger.info("Missing or unparseable priority %r; using Medium", response.priority)
            priority = Priority.MEDIUM

        officer, closeness = select_officer(officers, department, draft.location)
        self._log_model_disagreement(response, officers, department, officer)

        rationale = (
            f"Categorized as {category.value}; {category.value} complaints go to {department.value}. "
            f"Priority {priority.value}"
            + (f": {response.reasoning.strip()}" if response.reasoning and response.reasoning.strip() else ".")
            + f" Assigned {officer.name}, whose area ({officer.location}) {_CLOSENESS_PHRASES[closeness]} "
              f"{draft.location}, with {officer.active_cases} active case(s)."
        )
        logger.info("Recommendation: %s / %s / %s -> %s", category.value, department.value,
                    priority.value, officer.id)
        return Recommendation(category=category, department=department, priority=priority,
                              officer=OfficerRef(id=officer.id, name=officer.name), rationale=rationale)

    @staticmethod
    def _log_model_disagreement(response, officers: Sequence[Officer], department: Department,
                                chosen: Officer) -> None:
        if response.recommended_department and response.recommended_department != department.value:
            logger.info("Model suggested department %r; table says %s",
                        response.recommended_department, department.value)
        suggested = response.assigned_officer
        if suggested is None:
            return
        if suggested.id not in {o.id for o in officers}:
            logger.warning("Model suggested officer %r who is not on the roster; ignored", suggested.id)
        elif suggested.id != chosen.id:
            logger.info("Model suggested officer %s; rules picked %s", suggested.id, chosen.id)

    async def categorize_photo(self, photo: str) -> ComplaintCategory:
        """Suggest a category from a photo alone. Never raises: failures give Other."""
        try:
            raw = await asyncio.wait_for(self.classifier.categorize_image(photo), timeout=self.timeout)
            response = validate_image_response(raw)
        except asyncio.TimeoutError:
            logger.warning("Photo categorization timed out; using Other")
            return ComplaintCategory.OTHER
        except Exception as e:
            logger.warning("Photo categorization failed: %s; using Other", e)
            return ComplaintCategory.OTHER
        return parse_category(response.suggested_category) or ComplaintCategory.OTHER
