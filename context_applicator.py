import logging
import re
from typing import Optional

from conversation_context import ConversationContext
from question_normalizer import is_follow_up

LOGGER = logging.getLogger(__name__)

SPECIFIC_SCHOOL_NAME = re.compile(r"(?:Elementary|Middle|High|Charter)\s+School")
MENTIONS_DISTRICT = re.compile(r"district(?:_|\s+)?id|district\s+\d+|districtid", re.IGNORECASE)
MENTIONS_SCHOOL = re.compile(r"\bschool\b|\binstitution\b", re.IGNORECASE)
MENTIONS_SCHOOL_OR_PLURAL = re.compile(r"\bschools?\b|\binstitutions?\b", re.IGNORECASE)
MENTIONS_STUDENT = re.compile(r"\bstudents?\b", re.IGNORECASE)
ELEMENTARY_SCHOOL = re.compile(r"Elementary\s+School")


def apply_context(normalized: str, context: Optional[ConversationContext], original: Optional[str] = None) -> str:
    """Inject remembered school/district entities into a follow-up question.

    Conditions are evaluated against the incoming question, not against
    text appended by an earlier rule.
    """
    if context is None or not context.entities:
        return normalized
    original = original if original is not None else normalized
    entities = context.entities
    school_name = entities.get("school_name")
    district_id = entities.get("district_id")

    has_specific_school = bool(SPECIFIC_SCHOOL_NAME.search(normalized))
    mentions_district = bool(MENTIONS_DISTRICT.search(normalized))
    mentions_school = bool(MENTIONS_SCHOOL.search(normalized))

    enhanced = normalized
    applied = False
    if MENTIONS_STUDENT.search(normalized) and not mentions_school and not has_specific_school and school_name:
        enhanced += f" in school {school_name}"
        applied = True
    if (
        MENTIONS_SCHOOL_OR_PLURAL.search(normalized)
        and not mentions_district
        and not has_specific_school
        and district_id is not None
    ):
        enhanced += f" for district_id {district_id}"
        applied = True
    if not applied and is_follow_up(original) and not has_specific_school and not mentions_district:
        if school_name:
            enhanced += f" for school {school_name}"
        elif district_id is not None:
            enhanced += f" for district_id {district_id}"

    if ELEMENTARY_SCHOOL.search(original) and "district_id" in enhanced and "district_id" not in normalized:
        LOGGER.info("Named elementary school overrides inherited district filter")
        return normalized

    if enhanced != normalized:
        LOGGER.info(f"Enhanced question with context: {enhanced}")
    return enhanced
