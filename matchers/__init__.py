"""
Intent matcher bank.

MATCHER_REGISTRY is the priority order: more specific shapes come before
the generic ones they overlap with, and the first matcher returning a
result consumes the turn.
"""

import logging
from typing import Iterable, Optional

from conversation_context import QueryResult
from .base_matcher import BaseMatcher, MatchContext, wants_list
from .join_strategies import STUDENT_JOIN_STRATEGIES, JoinStrategy, run_join_strategies, run_multi_school_strategies
from .student_matchers import (
    AbsentStudentsMatcher,
    ReportsForStudentMatcher,
    StudentDetailsMatcher,
    StudentsAssociatedWithSchoolMatcher,
    StudentsInDistrictMatcher,
    StudentsInSchoolMatcher,
    StudentsInSchoolWithDistrictMatcher,
)
from .school_matchers import AllDistrictsMatcher, SchoolsByDistrictMatcher, SchoolsInDistrictDirectMatcher
from .intervention_matcher import InterventionMatcher
from .listing_matchers import AllTableMatcher, EntityByIdMatcher, RelatedToMatcher

LOGGER = logging.getLogger(__name__)

MATCHER_REGISTRY = (
    AbsentStudentsMatcher(),
    StudentsInSchoolWithDistrictMatcher(),
    StudentsAssociatedWithSchoolMatcher(),
    ReportsForStudentMatcher(),
    StudentsInDistrictMatcher(),
    StudentDetailsMatcher(),
    StudentsInSchoolMatcher(),
    SchoolsInDistrictDirectMatcher(),
    SchoolsByDistrictMatcher(),
    AllDistrictsMatcher(),
    InterventionMatcher(),
    AllTableMatcher(),
    EntityByIdMatcher(),
    RelatedToMatcher(),
)


def run_matchers(ctx: MatchContext, registry: Optional[Iterable[BaseMatcher]] = None) -> Optional[QueryResult]:
    """Return the first matcher result in priority order, or None."""
    for matcher in registry if registry is not None else MATCHER_REGISTRY:
        result = matcher.process(ctx)
        if result is not None:
            LOGGER.info(f"Question answered by matcher '{matcher.name}'")
            return result
    return None


__all__ = [
    'BaseMatcher',
    'MatchContext',
    'MATCHER_REGISTRY',
    'run_matchers',
    'wants_list',
    'JoinStrategy',
    'STUDENT_JOIN_STRATEGIES',
    'run_join_strategies',
    'run_multi_school_strategies',
]
