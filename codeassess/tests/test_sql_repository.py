import pytest
import pytest_asyncio

from codeassess.common.db.session import create_engine, create_session_factory, get_engine_kwargs
from codeassess.common.exceptions import ConflictError, DatabaseError
from codeassess.config import Settings
from codeassess.database.init_db import create_schema
from codeassess.assessments.models import (
    Assessment,
    AssessmentCandidate,
    AssessmentResult,
    CandidateStatus,
    QuizPointRecord,
    ResultStatus,
    UserAction,
)
from codeassess.assessments.scoring import get_candidate_comparative_score
from codeassess.assessments.sql_repository import SQLAssessmentStore

from conftest import EASY_QUIZ_POINT

SQLITE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def store():
    engine = create_engine(SQLITE_URL, Settings())
    await create_schema(engine)
    yield SQLAssessmentStore(create_session_factory(engine))
    await engine.dispose()


class TestEngineOptions:
    """Test engine options per backend."""

    def test_postgres_gets_pool_options(self):
        kwargs = get_engine_kwargs("postgresql+asyncpg://u:p@db/app", Settings(DB_POOL_SIZE=7))
        assert kwargs["pool_size"] == 7
        assert kwargs["pool_pre_ping"] is True

    def test_in_memory_sqlite_shares_one_connection(self):
        kwargs = get_engine_kwargs(SQLITE_URL, Settings())
        assert kwargs["poolclass"].__name__ == "StaticPool"
        assert "pool_size" not in kwargs


@pytest.mark.asyncio
class TestSQLAssessmentStore:
    """Test the relational store directly."""

    async def test_reference_data_round_trip(self, store, platform):
        quizzes = await store.get_quizzes([q.id for q in platform.quizzes])
        assert [q.title for q in quizzes] == ["Two sum", "Reverse list"]
        assert quizzes[0].difficulty_name == "easy"
        users = await store.get_users_by_emails(["user2@example.com"])
        assert users[0].name == "Second"
        assert {p.name for p in await store.list_assessment_points()} == {"easyQuizCompletionPoint", "speedPoint"}

    async def test_duplicate_result_is_a_conflict(self, store, assessment, platform):
        key = dict(assessment_id=assessment.id, candidate_id=platform.candidates[0].id, quiz_id=platform.quizzes[0].id)
        await store.create_result(AssessmentResult(**key))
        with pytest.raises(ConflictError):
            await store.create_result(AssessmentResult(**key))
        assert len(await store.list_results(assessment.id)) == 1

    async def test_unknown_reference_is_rejected(self, store, assessment):
        with pytest.raises(DatabaseError, match="foreign key"):
            await store.create_assessment_candidates([
                AssessmentCandidate(assessment_id=assessment.id, candidate_id="nobody")
            ])

    async def test_failed_transaction_rolls_back(self, store, platform):
        with pytest.raises(RuntimeError):
            async with store.transaction():
                await store.create_assessment(Assessment(owner_id=platform.owner.id, title="t", description="d"))
                async with store.transaction():
                    raise RuntimeError("abort")
        assert await store.list_assessments(platform.owner.id) == []

    async def test_quiz_point_upsert_and_counts(self, store, platform):
        quiz_id = platform.quizzes[0].id
        first, second = platform.candidates
        await store.save_quiz_point(QuizPointRecord(user_id=first.id, quiz_id=quiz_id, point=10))
        await store.save_quiz_point(QuizPointRecord(user_id=second.id, quiz_id=quiz_id, point=20))
        updated = await store.save_quiz_point(QuizPointRecord(user_id=first.id, quiz_id=quiz_id, point=30))

        assert updated.point == 30
        assert (await store.get_quiz_point(first.id, quiz_id)).point == 30
        assert await store.count_quiz_points(quiz_id) == 2
        assert await store.count_quiz_points(quiz_id, exclude_user_id=first.id) == 1
        assert await store.count_quiz_points(quiz_id, exclude_user_id=first.id, below=30) == 1
        assert await store.count_quiz_points(quiz_id, below=20) == 0


@pytest.mark.asyncio
class TestAssessmentWorkflowOnSQL:
    """Run the assessment workflow against SQLite."""

    async def test_candidate_lifecycle(self, service, store, assessment, platform):
        candidate = platform.candidates[0]
        outcome = await service.add_candidates({"assessment_id": assessment.id, "emails": [candidate.email]})
        assert outcome == {"count": 1, "sent": 1, "failed": 0}
        invited = await store.get_assessment_candidate(assessment.id, candidate.id)
        assert invited.status is CandidateStatus.PENDING

        await service.accept_candidate({
            "token": invited.token, "assessment_id": assessment.id, "user_id": candidate.id
        })
        for quiz in platform.quizzes:
            opened = await service.create_candidate_submission({
                "assessment_id": assessment.id, "quiz_id": quiz.id, "user_id": candidate.id
            })
            for code in ("first", "latest"):
                submitted = await service.update_candidate_submission({
                    "assessment_quiz_submission_id": opened.attempt.id,
                    "code": code,
                    "user_id": candidate.id,
                    "quiz_id": quiz.id,
                })
            assert [a.submission.code for a in submitted.result.attempts] == ["first", "latest"]

        view = await service.get_assessment({"assessment_id": assessment.id})
        assert view.candidates[0].status is CandidateStatus.COMPLETED
        buckets = view.submissions[0].data
        assert [b.status for b in buckets] == [ResultStatus.COMPLETED, ResultStatus.COMPLETED]
        assert [b.total_point for b in buckets] == [EASY_QUIZ_POINT, EASY_QUIZ_POINT]
        assert buckets[0].assessment_quiz_submissions[0].submission.code == "latest"

        actions = [a.action for a in await store.list_activities(assessment.id)]
        assert actions == [UserAction.ACCEPT, UserAction.COMPLETE]

        score = await get_candidate_comparative_score(
            store, {"user_id": candidate.id, "quiz_id": platform.quizzes[0].id}
        )
        assert score.users_count == 0
        assert score.comparative_score == EASY_QUIZ_POINT

    async def test_reopening_is_idempotent(self, service, accepted, platform):
        data = {"assessment_id": accepted.id, "quiz_id": platform.quizzes[0].id, "user_id": platform.candidates[0].id}
        first = await service.create_candidate_submission(data)
        second = await service.create_candidate_submission(data)
        assert second.result.id == first.result.id
        assert second.attempt.id == first.attempt.id

    async def test_delete_cascade(self, service, store, assessment, platform):
        candidate = platform.candidates[1]
        await service.add_candidates({"assessment_id": assessment.id, "emails": ["new@example.com"]})
        await service.accept_candidate({"token": "shared", "assessment_id": assessment.id, "user_id": candidate.id})
        opened = await service.create_candidate_submission({
            "assessment_id": assessment.id, "quiz_id": platform.quizzes[0].id, "user_id": candidate.id
        })
        submitted = await service.update_candidate_submission({
            "assessment_quiz_submission_id": opened.attempt.id,
            "code": "x",
            "user_id": candidate.id,
            "quiz_id": platform.quizzes[0].id,
        })

        deleted = await service.delete_assessment({"assessment_id": assessment.id})
        assert deleted.id == assessment.id
        assert await service.get_assessment({"assessment_id": assessment.id}) is None
        assert await store.list_results(assessment.id) == []
        assert await store.list_assessment_candidates(assessment.id) == []
        assert await store.list_candidate_emails(assessment.id) == []
        assert await store.list_assessment_quizzes(assessment.id) == []
        assert await store.get_quiz_submission(submitted.attempt.id) is None
        assert await store.get_quiz_point(candidate.id, platform.quizzes[0].id) is not None
        assert len(await store.list_activities(assessment.id)) == 1

    async def test_delete_result(self, service, store, accepted, platform):
        opened = await service.create_candidate_submission({
            "assessment_id": accepted.id, "quiz_id": platform.quizzes[0].id, "user_id": platform.candidates[0].id
        })
        deleted = await service.submissions.delete_assessment_result({"assessment_result_id": opened.result.id})
        assert deleted.id == opened.result.id
        assert await store.get_result(opened.result.id) is None
