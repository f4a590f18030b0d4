"""
Comparative Scoring

Ranks a candidate's quiz point against every other user holding a point for
the same quiz.
"""

from dataclasses import dataclass

from codeassess.common.exceptions import NotFoundError
from codeassess.common.logger import app_logger
from codeassess.common.serialization import SerializableMixin
from codeassess.common.validation import RequestRecord, validate_args
from codeassess.assessments.repositories import AssessmentStore

logger = app_logger.getChild("scoring")

LOW_BAND_LIMIT = 40
MEDIUM_BAND_LIMIT = 75


@dataclass
class ComparativeScore(SerializableMixin):
    """Comparative score with the count it was computed from."""

    __serializable_fields__ = ["comparative_score", "users_below_point_count"]

    comparative_score: float
    users_below_point_count: int


@dataclass
class CandidateScore(SerializableMixin):
    """Where a candidate stands for one quiz."""

    __serializable_fields__ = [
        "point", "comparative_score", "level", "users_count", "users_below_point_count"
    ]

    point: float
    comparative_score: float
    level: str
    users_count: int
    users_below_point_count: int


class ComparativeScoreRequest(RequestRecord):
    required_fields = ("users_count", "users_below_point_count", "point")

    users_count: int
    users_below_point_count: int
    point: float


class ScoreLevelRequest(RequestRecord):
    required_fields = ("comparative_score",)

    comparative_score: float


class UsersCountRequest(RequestRecord):
    required_fields = ("user_id", "quiz_id")

    user_id: str
    quiz_id: str


class UsersBelowPointRequest(RequestRecord):
    required_fields = ("user_id", "quiz_id", "point")

    user_id: str
    quiz_id: str
    point: float


@validate_args(ComparativeScoreRequest)
async def get_assessment_comparative_score(data: ComparativeScoreRequest) -> ComparativeScore:
    """
    Percentage of other users scoring below the candidate.

    With nobody to compare against the candidate's own point is returned as
    the score.
    """
    if data.users_count == 0:
        return ComparativeScore(comparative_score=data.point, users_below_point_count=0)

    score = round(data.users_below_point_count / data.users_count * 100)
    return ComparativeScore(comparative_score=score, users_below_point_count=data.users_below_point_count)


def get_assessment_comparative_score_level(data) -> str:
    """
    Band a comparative score into "low", "medium" or "high".

    Raises:
        MissingField: If ``comparative_score`` is absent (0 is a valid score)
    """
    request = ScoreLevelRequest.parse(data)
    if request.comparative_score < LOW_BAND_LIMIT:
        return "low"
    if request.comparative_score < MEDIUM_BAND_LIMIT:
        return "medium"
    return "high"


@validate_args(UsersCountRequest, arg_name="data")
async def get_assessment_users_count(store: AssessmentStore, data: UsersCountRequest) -> int:
    """Number of other users holding a point for the quiz."""
    return await store.count_quiz_points(data.quiz_id, exclude_user_id=data.user_id)


@validate_args(UsersBelowPointRequest, arg_name="data")
async def get_assessment_users_below_point_count(store: AssessmentStore, data: UsersBelowPointRequest) -> int:
    """Number of other users whose point for the quiz is strictly below ``point``."""
    return await store.count_quiz_points(data.quiz_id, exclude_user_id=data.user_id, below=data.point)


@validate_args(UsersCountRequest, arg_name="data")
async def get_candidate_comparative_score(store: AssessmentStore, data: UsersCountRequest) -> CandidateScore:
    """
    Score a candidate against everyone else who completed the quiz.

    Args:
        store: Assessment store
        data: Record with ``user_id`` and ``quiz_id``

    Returns:
        CandidateScore with the point, comparative score, band and counts

    Raises:
        NotFoundError: If the candidate holds no point for the quiz
    """
    record = await store.get_quiz_point(data.user_id, data.quiz_id)
    if record is None:
        raise NotFoundError("QuizPoint", (data.user_id, data.quiz_id))

    users_count = await get_assessment_users_count(store, data)
    users_below = await get_assessment_users_below_point_count(
        store, {"user_id": data.user_id, "quiz_id": data.quiz_id, "point": record.point}
    )
    score = await get_assessment_comparative_score({
        "users_count": users_count,
        "users_below_point_count": users_below,
        "point": record.point,
    })
    level = get_assessment_comparative_score_level({"comparative_score": score.comparative_score})

    logger.info(
        f"Candidate {data.user_id} scored {score.comparative_score} ({level}) on quiz {data.quiz_id}",
        extra={"data": {"user_id": data.user_id, "quiz_id": data.quiz_id}}
    )
    return CandidateScore(
        point=record.point,
        comparative_score=score.comparative_score,
        level=level,
        users_count=users_count,
        users_below_point_count=users_below,
    )
