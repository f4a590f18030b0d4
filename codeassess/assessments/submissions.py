"""
Submission Lifecycle

Opening a quiz hands the candidate a result and an open attempt slot;
submitting code fills the slot, completes the result and records the points.
Once every quiz of the assessment is completed the candidate is completed too.
"""

from typing import Dict, List, Optional

from codeassess.common.exceptions import AssessmentError, ConflictError, InvariantViolation, NotFoundError
from codeassess.common.logger import app_logger, log_execution_time
from codeassess.common.validation import RequestRecord, validate_args
from codeassess.assessments.models import (
    AssessmentQuizSubmission,
    AssessmentResult,
    CandidateActivity,
    CandidateStatus,
    CandidateSubmission,
    QuizPointRecord,
    ResultStatus,
    Submission,
    SubmissionPoint,
    UserAction,
    complete_result,
    start_result,
)
from codeassess.assessments.points import get_assessment_points, point_breakdown, quiz_point
from codeassess.assessments.repositories import AssessmentStore

logger = app_logger.getChild("submissions")


class CreateCandidateSubmissionRequest(RequestRecord):
    required_fields = ("assessment_id", "quiz_id", "user_id")

    assessment_id: str
    quiz_id: str
    user_id: str


class UpdateCandidateSubmissionRequest(RequestRecord):
    required_fields = ("assessment_quiz_submission_id", "code", "user_id", "quiz_id")

    assessment_quiz_submission_id: str
    code: str
    user_id: str
    quiz_id: str


class AssessmentResultRequest(RequestRecord):
    required_fields = ("assessment_id", "quiz_id")

    assessment_id: str
    quiz_id: str


class AssessmentIdRequest(RequestRecord):
    required_fields = ("assessment_id",)

    assessment_id: str


class DeleteResultRequest(RequestRecord):
    required_fields = ("assessment_result_id",)

    assessment_result_id: str


class DeleteQuizSubmissionsRequest(RequestRecord):
    required_fields = ("submission_ids",)

    submission_ids: List[str]


class SubmissionService:
    """Drives results and attempt slots through their lifecycle."""

    def __init__(self, store: AssessmentStore):
        self.store = store

    @validate_args(CreateCandidateSubmissionRequest)
    @log_execution_time(logger)
    async def create_candidate_submission(self, data: CreateCandidateSubmissionRequest) -> CandidateSubmission:
        """
        Open a quiz for a candidate.

        Finds or creates the candidate's result for the quiz and makes sure it
        holds exactly one open attempt slot. Calling it again returns the same
        result and slot.

        Args:
            data: Record with ``assessment_id``, ``quiz_id`` and ``user_id``

        Returns:
            CandidateSubmission with the result and its open slot

        Raises:
            NotFoundError: If the assessment, the quiz link or the candidate
                doesn't exist
            AssessmentError: If the candidate has not accepted the invitation
        """
        if await self.store.get_assessment(data.assessment_id) is None:
            raise NotFoundError("Assessment", data.assessment_id)
        links = await self.store.list_assessment_quizzes(data.assessment_id)
        if data.quiz_id not in {link.quiz_id for link in links}:
            raise NotFoundError("AssessmentQuiz", f"{data.assessment_id}/{data.quiz_id}")
        candidate = await self.store.get_assessment_candidate(data.assessment_id, data.user_id)
        if candidate is None:
            raise NotFoundError("AssessmentCandidate", f"{data.assessment_id}/{data.user_id}")
        if candidate.status is CandidateStatus.PENDING:
            raise AssessmentError(
                f"Candidate {data.user_id} has not accepted assessment {data.assessment_id}"
            )

        try:
            async with self.store.transaction():
                return await self._open_attempt(data)
        except ConflictError:
            # Another request created the result first; reuse it
            logger.debug(f"Result for {data.user_id}/{data.quiz_id} created concurrently, retrying")
            async with self.store.transaction():
                return await self._open_attempt(data)

    async def _open_attempt(self, data: CreateCandidateSubmissionRequest) -> CandidateSubmission:
        result = await self.store.find_result(data.assessment_id, data.user_id, data.quiz_id)
        if result is None:
            result = await self.store.create_result(AssessmentResult(
                assessment_id=data.assessment_id,
                candidate_id=data.user_id,
                quiz_id=data.quiz_id,
                status=ResultStatus.STARTED,
                total_point=0
            ))
            logger.info(
                f"Started quiz {data.quiz_id} for candidate {data.user_id}",
                extra={"data": {"assessment_id": data.assessment_id, "result_id": result.id}}
            )
        else:
            status = start_result(result.status)
            if status is not result.status:
                result.status = status
                result = await self.store.update_result(result)

        slot = result.open_slot()
        if slot is None:
            slot = await self.store.create_quiz_submission(
                AssessmentQuizSubmission(assessment_result_id=result.id, sequence=result.next_sequence())
            )
            result.assessment_quiz_submissions.append(slot)

        return CandidateSubmission(result=result, attempt=slot)

    @validate_args(UpdateCandidateSubmissionRequest)
    @log_execution_time(logger)
    async def update_candidate_submission(self, data: UpdateCandidateSubmissionRequest) -> CandidateSubmission:
        """
        Submit code for an attempt slot.

        Fills the slot (or appends a new attempt when the slot already holds
        code), completes the result with the quiz point and records the
        point for comparative scoring.

        Args:
            data: Record with ``assessment_quiz_submission_id``, ``code``,
                ``user_id`` and ``quiz_id``

        Returns:
            CandidateSubmission with the completed result and the filled attempt

        Raises:
            NotFoundError: If the slot, its result or the quiz doesn't exist
            InvariantViolation: If the slot belongs to another candidate or quiz
        """
        slot = await self.store.get_quiz_submission(data.assessment_quiz_submission_id)
        if slot is None:
            raise NotFoundError("AssessmentQuizSubmission", data.assessment_quiz_submission_id)
        result = await self.store.get_result(slot.assessment_result_id)
        if result is None:
            raise NotFoundError("AssessmentResult", slot.assessment_result_id)
        if result.candidate_id != data.user_id or result.quiz_id != data.quiz_id:
            raise InvariantViolation(
                f"Attempt {slot.id} does not belong to candidate {data.user_id} on quiz {data.quiz_id}"
            )

        quizzes = await self.store.get_quizzes([data.quiz_id])
        if not quizzes:
            raise NotFoundError("Quiz", data.quiz_id)
        points = await get_assessment_points(self.store)
        breakdown = point_breakdown(quizzes[0], points)
        point = quiz_point(quizzes[0], points)

        async with self.store.transaction():
            submission = await self.store.create_submission(
                Submission(user_id=data.user_id, quiz_id=data.quiz_id, code=data.code)
            )
            if slot.is_attempt:
                slot = await self.store.create_quiz_submission(AssessmentQuizSubmission(
                    assessment_result_id=result.id,
                    sequence=result.next_sequence(),
                    submission_id=submission.id
                ))
            else:
                slot.submission_id = submission.id
                slot = await self.store.update_quiz_submission(slot)

            result.status = complete_result(result.status)
            result.total_point = point
            result = await self.store.update_result(result)

            await self.store.save_quiz_point(
                QuizPointRecord(user_id=data.user_id, quiz_id=data.quiz_id, point=point)
            )
            await self.store.create_submission_points([
                SubmissionPoint(
                    submission_id=submission.id,
                    user_id=data.user_id,
                    assessment_point_id=category["id"],
                    point=category["point"]
                )
                for category in breakdown.values()
            ])
            await self._complete_candidate_if_done(result.assessment_id, data.user_id)

        logger.info(
            f"Candidate {data.user_id} submitted quiz {data.quiz_id} for {point} points",
            extra={"data": {"result_id": result.id, "submission_id": submission.id}}
        )
        return CandidateSubmission(result=result, attempt=slot)

    async def _complete_candidate_if_done(self, assessment_id: str, candidate_id: str) -> bool:
        links = await self.store.list_assessment_quizzes(assessment_id)
        completed = await self.store.list_results(
            assessment_id, candidate_id=candidate_id, status=ResultStatus.COMPLETED
        )
        if not links or not {l.quiz_id for l in links} <= {r.quiz_id for r in completed}:
            return False

        candidate = await self.store.get_assessment_candidate(assessment_id, candidate_id)
        if candidate is None or candidate.status is CandidateStatus.COMPLETED:
            return False

        candidate.status = candidate.status.advance(CandidateStatus.COMPLETED)
        await self.store.update_assessment_candidate(candidate)
        await self.store.create_activity(
            CandidateActivity(user_id=candidate_id, assessment_id=assessment_id, action=UserAction.COMPLETE)
        )
        logger.info(f"Candidate {candidate_id} completed assessment {assessment_id}")
        return True

    @validate_args(AssessmentResultRequest)
    async def get_assessment_result(self, data: AssessmentResultRequest) -> List[AssessmentResult]:
        """Results of every candidate for one quiz of an assessment."""
        return await self.store.list_results(data.assessment_id, quiz_id=data.quiz_id)

    @validate_args(AssessmentIdRequest)
    async def get_assessment_completed_quiz(self, data: AssessmentIdRequest) -> List[AssessmentResult]:
        return await self.store.list_results(data.assessment_id, status=ResultStatus.COMPLETED)

    @validate_args(DeleteResultRequest)
    async def delete_assessment_result(self, data: DeleteResultRequest) -> Optional[AssessmentResult]:
        """Delete a result together with its attempt slots."""
        async with self.store.transaction():
            await self.store.delete_result_quiz_submissions([data.assessment_result_id])
            return await self.store.delete_result(data.assessment_result_id)

    @validate_args(DeleteQuizSubmissionsRequest)
    async def delete_assessment_quiz_submissions(self, data: DeleteQuizSubmissionsRequest) -> Optional[Dict[str, int]]:
        """
        Delete attempt slots by id.

        Returns:
            ``{"count": n}``, or None when no ids were given
        """
        if not data.submission_ids:
            return None
        count = await self.store.delete_quiz_submissions(data.submission_ids)
        return {"count": count}
