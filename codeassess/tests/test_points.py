import pytest

from codeassess.common.exceptions import EmptyCollection, MissingField, ValidationError
from codeassess.assessments.models import AssessmentQuiz, DifficultyLevel, Quiz
from codeassess.assessments.points import (
    get_assessment_points,
    get_assessment_quiz_point,
    point_breakdown,
    quiz_point,
)

POINTS = {
    "easyQuizCompletionPoint": {"point": 1, "id": "1111"},
    "speedPoint": {"point": 1, "id": "2222"},
}

EASY_QUIZ = {
    "id": "quiz1",
    "title": "Two sum",
    "instruction": "Just do it",
    "difficulty_level_id": 1,
    "difficulty_level": {"name": "easy"},
}


@pytest.mark.asyncio
class TestGetAssessmentQuizPoint:
    """Test quiz point computation."""

    async def test_single_easy_quiz(self):
        summary = await get_assessment_quiz_point({
            "assessment_quizzes": [{"quiz": EASY_QUIZ}],
            "assessment_points": POINTS,
        })
        assert summary.total_point == 2.2
        assert summary.quiz_points == {"quiz1": 2.2}
        assert summary.assigned_quizzes == [EASY_QUIZ]

    async def test_accepts_assessment_quiz_links(self):
        quiz = Quiz(title="Two sum", id="quiz1", difficulty_level=DifficultyLevel(id=1, name="easy"))
        summary = await get_assessment_quiz_point({
            "assessment_quizzes": [AssessmentQuiz("a", "quiz1", quiz), AssessmentQuiz("a", "quiz2", Quiz(
                title="Other", id="quiz2", difficulty_level=DifficultyLevel(id=1, name="easy")
            ))],
            "assessment_points": POINTS,
        })
        assert summary.quiz_points == {"quiz1": 2.2, "quiz2": 2.2}
        assert summary.total_point == 4.4
        assert summary.assigned_quizzes[0] is not None

    async def test_missing_assessment_quizzes(self):
        with pytest.raises(MissingField, match="^missing assessment_quizzes$"):
            await get_assessment_quiz_point({"assessment_points": POINTS})

    async def test_empty_assessment_quizzes(self):
        with pytest.raises(EmptyCollection, match="^assessment_quizzes is empty$"):
            await get_assessment_quiz_point({"assessment_quizzes": [], "assessment_points": POINTS})

    async def test_missing_assessment_points(self):
        with pytest.raises(MissingField, match="^missing assessment_points$"):
            await get_assessment_quiz_point({"assessment_quizzes": [""]})

    async def test_unknown_difficulty_category(self):
        hard = dict(EASY_QUIZ, difficulty_level={"name": "hard"})
        with pytest.raises(MissingField, match="^missing hardQuizCompletionPoint$"):
            await get_assessment_quiz_point({"assessment_quizzes": [{"quiz": hard}], "assessment_points": POINTS})


class TestPointBreakdown:
    """Test the per-category contributions."""

    def test_breakdown_lists_both_categories(self):
        breakdown = point_breakdown({"quiz": EASY_QUIZ}, POINTS)
        assert breakdown == {
            "easyQuizCompletionPoint": {"point": 1, "id": "1111"},
            "speedPoint": {"point": 1, "id": "2222"},
        }

    def test_missing_speed_point(self):
        with pytest.raises(MissingField, match="^missing speedPoint$"):
            point_breakdown(EASY_QUIZ, {"easyQuizCompletionPoint": {"point": 1, "id": "1"}})

    def test_quiz_without_difficulty(self):
        with pytest.raises(MissingField, match="^missing difficulty_level$"):
            quiz_point(Quiz(title="t"), POINTS)

    def test_bonus_applies_to_sum(self):
        points = {
            "easyQuizCompletionPoint": {"point": 1000, "id": "1"},
            "speedPoint": {"point": 500, "id": "2"},
        }
        assert quiz_point(EASY_QUIZ, points) == 1650.0

    def test_negative_category_is_rejected(self):
        points = dict(POINTS, easyQuizCompletionPoint={"point": -5000, "id": "1111"})
        with pytest.raises(ValidationError, match="^easyQuizCompletionPoint cannot be negative$"):
            point_breakdown(EASY_QUIZ, points)
        with pytest.raises(ValidationError):
            quiz_point(EASY_QUIZ, dict(POINTS, speedPoint={"point": -1, "id": "2222"}))

    def test_zero_point_category_is_allowed(self):
        assert quiz_point(EASY_QUIZ, dict(POINTS, speedPoint={"point": 0, "id": "2222"})) == 1.1


@pytest.mark.asyncio
async def test_get_assessment_points_maps_by_name(store, platform):
    points = await get_assessment_points(store)
    assert points == {
        "easyQuizCompletionPoint": {"point": 1000, "id": platform.points["easyQuizCompletionPoint"].id},
        "speedPoint": {"point": 500, "id": platform.points["speedPoint"].id},
    }
