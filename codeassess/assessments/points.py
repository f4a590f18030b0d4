"""
Quiz Points

Point categories are configured globally (``easyQuizCompletionPoint``,
``speedPoint`` ...). A quiz is worth its difficulty's completion point plus the
speed point, with a 10% completion bonus on the sum.
"""

from typing import Any, Dict, List, Mapping, Optional

from codeassess.common.exceptions import MissingField, ValidationError
from codeassess.common.logger import app_logger
from codeassess.common.validation import RequestRecord, validate_args
from codeassess.assessments.models import Quiz, QuizPointSummary
from codeassess.assessments.repositories import AssessmentStore

logger = app_logger.getChild("points")

SPEED_POINT = "speedPoint"
COMPLETION_BONUS = 1.1


def completion_point_name(difficulty: str) -> str:
    """Name of the completion category for a difficulty, e.g. ``easyQuizCompletionPoint``."""
    return f"{difficulty}QuizCompletionPoint"


class QuizPointRequest(RequestRecord):
    required_fields = ("assessment_quizzes", "assessment_points")
    non_empty_fields = {"assessment_quizzes": "assessment_quizzes is empty"}

    assessment_quizzes: List[Any]
    assessment_points: Dict[str, Any]


async def get_assessment_points(store: AssessmentStore) -> Dict[str, Dict[str, Any]]:
    """
    Get the global point categories.

    Returns:
        Mapping of category name to ``{"point": value, "id": category id}``
    """
    points = await store.list_assessment_points()
    return {p.name: {"point": p.point, "id": p.id} for p in points}


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def _quiz_of(link: Any) -> Any:
    """Quiz behind an assessment-quiz link, or the quiz itself."""
    quiz = _field(link, "quiz")
    return quiz if quiz is not None else link


def _difficulty_of(quiz: Any) -> Optional[str]:
    if isinstance(quiz, Quiz):
        return quiz.difficulty_name
    return _field(_field(quiz, "difficulty_level"), "name")


def _category(points: Mapping[str, Any], name: str) -> Any:
    category = points.get(name)
    if category is None:
        raise MissingField(name)
    return category


def point_breakdown(quiz: Any, assessment_points: Mapping[str, Any]) -> Dict[str, Dict[str, Any]]:
    """
    Per-category contributions of a quiz.

    Args:
        quiz: Quiz (or assessment-quiz link) with its difficulty attached
        assessment_points: Mapping returned by get_assessment_points

    Returns:
        Mapping of category name to ``{"point", "id"}`` for every category the quiz earns

    Raises:
        MissingField: If the difficulty or a category is unknown
        ValidationError: If a category is worth a negative point
    """
    quiz = _quiz_of(quiz)
    difficulty = _difficulty_of(quiz)
    if difficulty is None:
        raise MissingField("difficulty_level")

    breakdown = {}
    for name in (completion_point_name(difficulty), SPEED_POINT):
        category = _category(assessment_points, name)
        point = _field(category, "point")
        if point is not None and point < 0:
            raise ValidationError(f"{name} cannot be negative", name)
        breakdown[name] = {"point": point, "id": _field(category, "id")}
    return breakdown


def quiz_point(quiz: Any, assessment_points: Mapping[str, Any]) -> float:
    """Point a candidate earns for completing a quiz."""
    breakdown = point_breakdown(quiz, assessment_points)
    return round(sum(c["point"] for c in breakdown.values()) * COMPLETION_BONUS, 2)


@validate_args(QuizPointRequest)
async def get_assessment_quiz_point(data: QuizPointRequest) -> QuizPointSummary:
    """
    Compute the point of every quiz of an assessment.

    Args:
        data: Record with ``assessment_quizzes`` (links or quizzes with their
            difficulty) and ``assessment_points``

    Returns:
        QuizPointSummary with the total, per-quiz points and the quizzes themselves
    """
    quiz_points = {}
    assigned_quizzes = []
    for link in data.assessment_quizzes:
        quiz = _quiz_of(link)
        quiz_points[_field(quiz, "id")] = quiz_point(quiz, data.assessment_points)
        assigned_quizzes.append(quiz)

    total = round(sum(quiz_points.values()), 2)
    logger.debug(f"Computed {len(quiz_points)} quiz points, total {total}")
    return QuizPointSummary(total_point=total, quiz_points=quiz_points, assigned_quizzes=assigned_quizzes)
