import asyncio

import pytest

from codeassess.common.exceptions import AssessmentError, InvariantViolation, MissingField, NotFoundError
from codeassess.assessments.models import CandidateStatus, Quiz, ResultStatus, User, UserAction
from codeassess.assessments.submissions import SubmissionService

from conftest import EASY_QUIZ_POINT


@pytest.fixture
def submissions(store, accepted):
    return SubmissionService(store)


async def open_quiz(submissions, assessment, candidate, quiz):
    return await submissions.create_candidate_submission({
        "assessment_id": assessment.id,
        "quiz_id": quiz.id,
        "user_id": candidate.id,
    })


async def submit(submissions, opened, candidate, quiz, code):
    return await submissions.update_candidate_submission({
        "assessment_quiz_submission_id": opened.attempt.id,
        "code": code,
        "user_id": candidate.id,
        "quiz_id": quiz.id,
    })


@pytest.mark.asyncio
class TestCreateCandidateSubmission:
    """Test opening a quiz."""

    async def test_new_result_is_started_without_attempts(self, submissions, assessment, platform):
        opened = await open_quiz(submissions, assessment, platform.candidates[0], platform.quizzes[0])
        assert opened.result.status is ResultStatus.STARTED
        assert opened.result.total_point == 0
        assert opened.result.attempts == []
        assert opened.attempt.submission_id is None
        assert opened.attempt.assessment_result_id == opened.result.id

    async def test_retry_reuses_result_and_open_slot(self, submissions, store, assessment, platform):
        first = await open_quiz(submissions, assessment, platform.candidates[0], platform.quizzes[0])
        second = await open_quiz(submissions, assessment, platform.candidates[0], platform.quizzes[0])
        assert second.result.id == first.result.id
        assert second.attempt.id == first.attempt.id
        assert len(await store.list_results(assessment.id)) == 1

    async def test_concurrent_opens_create_one_result(self, submissions, store, assessment, platform):
        opened = await asyncio.gather(*[
            open_quiz(submissions, assessment, platform.candidates[0], platform.quizzes[0]) for _ in range(3)
        ])
        assert len({o.result.id for o in opened}) == 1
        assert len(await store.list_results(assessment.id)) == 1

    async def test_unknown_assessment(self, submissions, platform):
        with pytest.raises(NotFoundError):
            await submissions.create_candidate_submission({
                "assessment_id": "missing", "quiz_id": platform.quizzes[0].id, "user_id": platform.candidates[0].id
            })

    async def test_quiz_outside_assessment(self, submissions, store, assessment, platform):
        other = await store.save_quiz(Quiz(
            title="Merge intervals",
            instruction="Not part of this assessment",
            user_id=platform.owner.id,
            difficulty_level_id=1,
            code_language_id=1
        ))
        with pytest.raises(NotFoundError, match="^AssessmentQuiz with ID"):
            await open_quiz(submissions, assessment, platform.candidates[0], other)
        assert await store.list_results(assessment.id) == []

    async def test_user_never_enrolled(self, submissions, store, assessment, platform):
        outsider = User(email="outsider@example.com")
        await store.create_users([outsider])
        with pytest.raises(NotFoundError, match="^AssessmentCandidate with ID"):
            await open_quiz(submissions, assessment, outsider, platform.quizzes[0])
        assert await store.list_results(assessment.id) == []

    async def test_invited_candidate_must_accept_first(self, service, submissions, store, assessment, platform):
        await service.add_candidates({"assessment_id": assessment.id, "emails": ["invitee@example.com"]})
        [invitee] = await store.get_users_by_emails(["invitee@example.com"])
        pending = await store.get_assessment_candidate(assessment.id, invitee.id)
        assert pending.status is CandidateStatus.PENDING

        with pytest.raises(AssessmentError, match="has not accepted"):
            await open_quiz(submissions, assessment, invitee, platform.quizzes[0])
        assert await store.list_results(assessment.id, candidate_id=invitee.id) == []

    @pytest.mark.parametrize("missing", ["assessment_id", "quiz_id", "user_id"])
    async def test_missing_field(self, submissions, missing):
        data = {"assessment_id": "a", "quiz_id": "q", "user_id": "u"}
        del data[missing]
        with pytest.raises(MissingField, match=f"^missing {missing}$"):
            await submissions.create_candidate_submission(data)


@pytest.mark.asyncio
class TestUpdateCandidateSubmission:
    """Test submitting code."""

    async def test_submission_completes_result(self, submissions, store, assessment, platform):
        candidate, quiz = platform.candidates[0], platform.quizzes[0]
        opened = await open_quiz(submissions, assessment, candidate, quiz)
        submitted = await submit(submissions, opened, candidate, quiz, "print('hi')")

        assert submitted.result.status is ResultStatus.COMPLETED
        assert submitted.result.total_point == EASY_QUIZ_POINT
        assert len(submitted.result.attempts) == 1
        assert submitted.attempt.submission.code == "print('hi')"

        record = await store.get_quiz_point(candidate.id, quiz.id)
        assert record.point == EASY_QUIZ_POINT

    async def test_submission_points_recorded_per_category(self, submissions, store, assessment, platform):
        candidate, quiz = platform.candidates[0], platform.quizzes[0]
        opened = await open_quiz(submissions, assessment, candidate, quiz)
        submitted = await submit(submissions, opened, candidate, quiz, "x = 1")

        rows = [p for p in store._submission_points.values() if p.submission_id == submitted.attempt.submission_id]
        assert sorted(p.point for p in rows) == [500, 1000]

    async def test_resubmission_appends_attempt(self, submissions, assessment, platform):
        candidate, quiz = platform.candidates[0], platform.quizzes[0]
        opened = await open_quiz(submissions, assessment, candidate, quiz)
        await submit(submissions, opened, candidate, quiz, "first")
        latest = await submit(submissions, opened, candidate, quiz, "second")

        assert [a.submission.code for a in latest.result.attempts] == ["first", "second"]
        assert latest.result.latest_attempt.submission.code == "second"
        assert latest.attempt.id != opened.attempt.id

    async def test_reopening_after_completion_keeps_result_completed(self, submissions, assessment, platform):
        candidate, quiz = platform.candidates[0], platform.quizzes[0]
        opened = await open_quiz(submissions, assessment, candidate, quiz)
        await submit(submissions, opened, candidate, quiz, "first")
        reopened = await open_quiz(submissions, assessment, candidate, quiz)
        assert reopened.result.status is ResultStatus.COMPLETED
        assert reopened.attempt.submission_id is None
        assert reopened.attempt.sequence == 1

    async def test_candidate_completes_after_last_quiz(self, submissions, store, assessment, platform):
        candidate = platform.candidates[0]

        for index, quiz in enumerate(platform.quizzes):
            opened = await open_quiz(submissions, assessment, candidate, quiz)
            await submit(submissions, opened, candidate, quiz, f"solution {index}")
            enrolled = await store.get_assessment_candidate(assessment.id, candidate.id)
            if index == 0:
                assert enrolled.status is CandidateStatus.ACCEPTED

        assert enrolled.status is CandidateStatus.COMPLETED
        actions = [a.action for a in await store.list_activities(assessment.id) if a.user_id == candidate.id]
        assert actions == [UserAction.ACCEPT, UserAction.COMPLETE]

    async def test_slot_of_another_candidate(self, submissions, assessment, platform):
        quiz = platform.quizzes[0]
        opened = await open_quiz(submissions, assessment, platform.candidates[0], quiz)
        with pytest.raises(InvariantViolation):
            await submit(submissions, opened, platform.candidates[1], quiz, "steal")

    async def test_unknown_slot(self, submissions, platform):
        with pytest.raises(NotFoundError):
            await submissions.update_candidate_submission({
                "assessment_quiz_submission_id": "missing",
                "code": "x",
                "user_id": platform.candidates[0].id,
                "quiz_id": platform.quizzes[0].id,
            })

    async def test_empty_code_is_present(self, submissions, assessment, platform):
        candidate, quiz = platform.candidates[0], platform.quizzes[0]
        opened = await open_quiz(submissions, assessment, candidate, quiz)
        submitted = await submit(submissions, opened, candidate, quiz, "")
        assert submitted.attempt.submission.code == ""

    @pytest.mark.parametrize("missing", ["assessment_quiz_submission_id", "code", "user_id", "quiz_id"])
    async def test_missing_field(self, submissions, missing):
        data = {"assessment_quiz_submission_id": "s", "code": "c", "user_id": "u", "quiz_id": "q"}
        del data[missing]
        with pytest.raises(MissingField, match=f"^missing {missing}$"):
            await submissions.update_candidate_submission(data)


@pytest.mark.asyncio
class TestResultQueries:
    """Test reading and deleting results."""

    async def test_get_assessment_result(self, submissions, assessment, platform):
        quiz = platform.quizzes[0]
        for candidate in platform.candidates:
            await open_quiz(submissions, assessment, candidate, quiz)
        await open_quiz(submissions, assessment, platform.candidates[0], platform.quizzes[1])

        results = await submissions.get_assessment_result({"assessment_id": assessment.id, "quiz_id": quiz.id})
        assert {r.candidate_id for r in results} == {c.id for c in platform.candidates}

    async def test_get_assessment_completed_quiz(self, submissions, assessment, platform):
        candidate = platform.candidates[0]
        opened = await open_quiz(submissions, assessment, candidate, platform.quizzes[0])
        await submit(submissions, opened, candidate, platform.quizzes[0], "done")
        await open_quiz(submissions, assessment, candidate, platform.quizzes[1])

        completed = await submissions.get_assessment_completed_quiz({"assessment_id": assessment.id})
        assert [r.quiz_id for r in completed] == [platform.quizzes[0].id]

    async def test_delete_assessment_result(self, submissions, store, assessment, platform):
        opened = await open_quiz(submissions, assessment, platform.candidates[0], platform.quizzes[0])
        deleted = await submissions.delete_assessment_result({"assessment_result_id": opened.result.id})
        assert deleted.id == opened.result.id
        assert await store.get_result(opened.result.id) is None
        assert await store.get_quiz_submission(opened.attempt.id) is None

    async def test_delete_quiz_submissions(self, submissions, assessment, platform):
        opened = await open_quiz(submissions, assessment, platform.candidates[0], platform.quizzes[0])
        deleted = await submissions.delete_assessment_quiz_submissions({"submission_ids": [opened.attempt.id]})
        assert deleted == {"count": 1}

    async def test_delete_quiz_submissions_with_no_ids(self, submissions):
        assert await submissions.delete_assessment_quiz_submissions({"submission_ids": []}) is None

    async def test_delete_quiz_submissions_missing_ids(self, submissions):
        with pytest.raises(MissingField, match="^missing submission_ids$"):
            await submissions.delete_assessment_quiz_submissions({})

    async def test_delete_result_missing_id(self, submissions):
        with pytest.raises(MissingField, match="^missing assessment_result_id$"):
            await submissions.delete_assessment_result({"assessment_result_id": None})
