"""
Assessment Service

This module provides the entry points of the assessment workflow: authoring
assessments, enrolling and inviting candidates, tracking their status and
assembling the aggregate views used for display and scoring.
"""

import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

from codeassess.common.exceptions import (
    AssessmentError,
    InvariantViolation,
    NotFoundError,
    NotificationError,
    ValidationError,
)
from codeassess.common.logger import app_logger, log_execution_time
from codeassess.common.validation import RequestRecord, empty_message, validate_args
from codeassess.config import Settings, settings as default_settings
from codeassess.assessments.models import (
    Assessment,
    AssessmentCandidate,
    AssessmentCandidateEmail,
    AssessmentQuiz,
    AssessmentSummary,
    AssessmentView,
    CandidateActivity,
    CandidateStatus,
    CandidateSubmission,
    CandidateSubmissions,
    CandidateView,
    QuizResultSummary,
    User,
    UserAction,
    new_id,
    utcnow,
)
from codeassess.assessments.notifications import (
    InvitationContent,
    InvitationMailer,
    SmtpInvitationMailer,
    invitation_link,
)
from codeassess.assessments.repositories import AssessmentStore
from codeassess.assessments.submissions import SubmissionService

logger = app_logger.getChild("assessments")


class CreateAssessmentRequest(RequestRecord):
    required_fields = ("user_id", "title", "description", "quiz_ids")
    non_empty_fields = {"quiz_ids": empty_message("quiz_id")}

    user_id: str
    title: str
    description: str
    quiz_ids: List[str]
    start_at: Optional[datetime.datetime] = None
    end_at: Optional[datetime.datetime] = None


class UpdateAssessmentRequest(RequestRecord):
    required_fields = ("assessment_id", "title", "description")

    assessment_id: str
    title: str
    description: str
    start_at: Optional[datetime.datetime] = None
    end_at: Optional[datetime.datetime] = None


class AssessmentQuizzesRequest(RequestRecord):
    required_fields = ("assessment_id", "quiz_ids")
    non_empty_fields = {"quiz_ids": empty_message("quiz_id")}

    assessment_id: str
    quiz_ids: List[str]


class AssessmentQuizRequest(RequestRecord):
    required_fields = ("assessment_id", "quiz_id")

    assessment_id: str
    quiz_id: str


class AddCandidatesRequest(RequestRecord):
    required_fields = ("assessment_id", "emails")
    non_empty_fields = {"emails": empty_message("email")}

    assessment_id: str
    emails: List[str]
    locale: Optional[str] = None


class CandidateEmailRow(RequestRecord):
    required_fields = ("assessment_id", "email", "status_code", "error_message")

    assessment_id: str
    email: str
    status_code: int
    error_message: str


class AcceptCandidateRequest(RequestRecord):
    required_fields = ("token", "assessment_id", "user_id")

    token: str
    assessment_id: str
    user_id: str


class CandidateStatusRequest(RequestRecord):
    required_fields = ("assessment_id", "candidate_id")

    assessment_id: str
    candidate_id: str
    status: Optional[CandidateStatus] = None


class AssessmentIdRequest(RequestRecord):
    required_fields = ("assessment_id",)

    assessment_id: str


class OwnerRequest(RequestRecord):
    required_fields = ("user_id",)

    user_id: str


def _unique(values: Sequence[str]) -> List[str]:
    return list(dict.fromkeys(values))


def _check_window(start_at: Optional[datetime.datetime], end_at: Optional[datetime.datetime]) -> None:
    if start_at is not None and end_at is not None and end_at < start_at:
        raise ValidationError("end_at cannot be earlier than start_at", "end_at")


class AssessmentService:
    """
    Orchestrates the assessment workflow on top of an AssessmentStore.

    Collaborators are injected: the store for persistence and the mailer for
    invitations. Submission handling is delegated to SubmissionService.
    """

    def __init__(
        self,
        store: AssessmentStore,
        mailer: Optional[InvitationMailer] = None,
        settings: Optional[Settings] = None
    ):
        self.store = store
        self.settings = settings or default_settings
        self.mailer = mailer or SmtpInvitationMailer(self.settings)
        self.submissions = SubmissionService(store)

    # Assessments

    @validate_args(CreateAssessmentRequest)
    @log_execution_time(logger)
    async def create_assessment(self, data: CreateAssessmentRequest) -> Assessment:
        """
        Create an assessment with its quizzes.

        The assessment and its quiz links are written in one unit of work, so
        an assessment never exists without quizzes.

        Args:
            data: Record with ``user_id``, ``title``, ``description``,
                ``quiz_ids`` and optional ``start_at`` / ``end_at``

        Returns:
            The created assessment

        Raises:
            NotFoundError: If the owner or one of the quizzes doesn't exist
        """
        _check_window(data.start_at, data.end_at)
        if await self.store.get_user(data.user_id) is None:
            raise NotFoundError("User", data.user_id)
        quiz_ids = _unique(data.quiz_ids)
        found = {q.id for q in await self.store.get_quizzes(quiz_ids)}
        for quiz_id in quiz_ids:
            if quiz_id not in found:
                raise NotFoundError("Quiz", quiz_id)

        assessment = Assessment(
            owner_id=data.user_id,
            title=data.title,
            description=data.description,
            start_at=data.start_at,
            end_at=data.end_at
        )
        async with self.store.transaction():
            assessment = await self.store.create_assessment(assessment)
            await self.store.create_assessment_quizzes(
                [AssessmentQuiz(assessment_id=assessment.id, quiz_id=quiz_id) for quiz_id in quiz_ids]
            )

        logger.info(
            f"Created assessment {assessment.id} with {len(quiz_ids)} quizzes",
            extra={"data": {"assessment_id": assessment.id, "owner_id": data.user_id}}
        )
        return assessment

    @validate_args(UpdateAssessmentRequest)
    async def update_assessment(self, data: UpdateAssessmentRequest) -> Assessment:
        """Change title, description and, when given, the time window."""
        assessment = await self.store.get_assessment(data.assessment_id)
        if assessment is None:
            raise NotFoundError("Assessment", data.assessment_id)

        assessment.title = data.title
        assessment.description = data.description
        if data.start_at is not None:
            assessment.start_at = data.start_at
        if data.end_at is not None:
            assessment.end_at = data.end_at
        _check_window(assessment.start_at, assessment.end_at)
        return await self.store.update_assessment(assessment)

    @validate_args(AssessmentIdRequest)
    @log_execution_time(logger)
    async def delete_assessment(self, data: AssessmentIdRequest) -> Optional[Assessment]:
        """
        Delete an assessment and everything that hangs off it.

        Attempt slots, results, invitation log rows, candidates and quiz links
        go first, in that order, inside one unit of work. Submissions and quiz
        points belong to the users and are kept.

        Returns:
            The deleted assessment, or None if it did not exist
        """
        async with self.store.transaction():
            results = await self.store.list_results(data.assessment_id)
            await self.store.delete_result_quiz_submissions([r.id for r in results])
            await self.store.delete_results(data.assessment_id)
            await self.store.delete_candidate_emails(data.assessment_id)
            await self.store.delete_assessment_candidates(data.assessment_id)
            await self.store.delete_assessment_quizzes(data.assessment_id)
            deleted = await self.store.delete_assessment(data.assessment_id)

        if deleted is not None:
            logger.info(f"Deleted assessment {data.assessment_id}")
        return deleted

    @validate_args(AssessmentIdRequest)
    async def get_assessment(self, data: AssessmentIdRequest) -> Optional[AssessmentView]:
        """
        Assemble the aggregate view of an assessment.

        Every candidate gets one submissions bucket per quiz of the
        assessment; a quiz the candidate never opened shows as PENDING with
        no attempts, and an opened quiz shows only its latest attempt.

        Returns:
            AssessmentView, or None if the assessment doesn't exist
        """
        assessment = await self.store.get_assessment(data.assessment_id)
        if assessment is None:
            return None

        links = await self.store.list_assessment_quizzes(data.assessment_id)
        candidates = await self.store.list_assessment_candidates(data.assessment_id)
        results = await self.store.list_results(data.assessment_id)
        by_candidate_quiz = {(r.candidate_id, r.quiz_id): r for r in results}

        views = []
        submissions = []
        for candidate in candidates:
            user = candidate.candidate
            email = user.email if user else ""
            name = user.display_name if user else ""
            views.append(CandidateView(
                id=candidate.candidate_id,
                email=email,
                name=name,
                status=candidate.status,
                accepted_at=candidate.accepted_at
            ))
            submissions.append(CandidateSubmissions(
                candidate_id=candidate.candidate_id,
                name=name,
                email=email,
                data=[
                    QuizResultSummary.from_result(
                        link.quiz_id, by_candidate_quiz.get((candidate.candidate_id, link.quiz_id))
                    )
                    for link in links
                ]
            ))

        return AssessmentView(
            data=assessment,
            quizzes=[link.quiz for link in links if link.quiz is not None],
            candidates=views,
            submissions=submissions
        )

    @validate_args(OwnerRequest)
    async def get_assessments(self, data: OwnerRequest) -> List[Assessment]:
        return await self.store.list_assessments(data.user_id)

    @validate_args(OwnerRequest)
    async def get_many(self, data: OwnerRequest) -> List[AssessmentSummary]:
        """Listing projection of the assessments a user owns."""
        owner = await self.store.get_user(data.user_id)
        owner_name = owner.display_name if owner else None

        summaries = []
        for assessment in await self.store.list_assessments(data.user_id):
            links = await self.store.list_assessment_quizzes(assessment.id)
            candidates = await self.store.list_assessment_candidates(assessment.id)
            summaries.append(AssessmentSummary(
                id=assessment.id,
                title=assessment.title,
                description=assessment.description,
                owner_name=owner_name,
                quiz_ids=[link.quiz_id for link in links],
                candidates=[
                    {
                        "id": c.candidate_id,
                        "name": c.candidate.display_name if c.candidate else None,
                        "status": c.status.value,
                    }
                    for c in candidates
                ],
                created_at=assessment.created_at
            ))
        return summaries

    @validate_args(OwnerRequest)
    async def get_assessment_ids(self, data: OwnerRequest) -> List[str]:
        return [a.id for a in await self.store.list_assessments(data.user_id)]

    # Quiz links

    @validate_args(AssessmentQuizzesRequest)
    async def add_assessment_quizzes(self, data: AssessmentQuizzesRequest) -> Dict[str, int]:
        """
        Link more quizzes to an assessment.

        Quizzes that are already linked are skipped.

        Returns:
            ``{"count": n}`` with the number of links created
        """
        if await self.store.get_assessment(data.assessment_id) is None:
            raise NotFoundError("Assessment", data.assessment_id)
        linked = {link.quiz_id for link in await self.store.list_assessment_quizzes(data.assessment_id)}
        links = [
            AssessmentQuiz(assessment_id=data.assessment_id, quiz_id=quiz_id)
            for quiz_id in _unique(data.quiz_ids)
            if quiz_id not in linked
        ]
        count = await self.store.create_assessment_quizzes(links) if links else 0
        return {"count": count}

    @validate_args(AssessmentQuizRequest)
    async def delete_assessment_quiz(self, data: AssessmentQuizRequest) -> Optional[AssessmentQuiz]:
        """
        Unlink a quiz from an assessment.

        Raises:
            InvariantViolation: If it is the assessment's last quiz
        """
        async with self.store.transaction():
            links = await self.store.list_assessment_quizzes(data.assessment_id)
            if not any(link.quiz_id == data.quiz_id for link in links):
                return None
            if len(links) == 1:
                raise InvariantViolation(f"Assessment {data.assessment_id} must keep at least one quiz")
            return await self.store.delete_assessment_quiz(data.assessment_id, data.quiz_id)

    # Candidates

    @validate_args(AddCandidatesRequest)
    @log_execution_time(logger)
    async def add_candidates(self, data: AddCandidatesRequest) -> Dict[str, int]:
        """
        Enrol candidates by email and send their invitations.

        Unknown addresses get a new user; addresses that are not yet
        candidates get a PENDING candidate row. Every address receives an
        invitation and every delivery is logged, whether it succeeded or not.

        Args:
            data: Record with ``assessment_id``, ``emails`` and optional ``locale``

        Returns:
            ``{"count", "sent", "failed"}``: candidates created and delivery outcome
        """
        assessment = await self.store.get_assessment(data.assessment_id)
        if assessment is None:
            raise NotFoundError("Assessment", data.assessment_id)
        emails = _unique(data.emails)

        async with self.store.transaction():
            users = {u.email: u for u in await self.store.get_users_by_emails(emails)}
            new_users = [User(email=email) for email in emails if email not in users]
            if new_users:
                for user in await self.store.create_users(new_users):
                    users[user.email] = user

            enrolled = {
                c.candidate_id: c for c in await self.store.list_assessment_candidates(data.assessment_id)
            }
            new_candidates = [
                AssessmentCandidate(assessment_id=data.assessment_id, candidate_id=users[email].id, token=new_id())
                for email in emails
                if users[email].id not in enrolled
            ]
            if new_candidates:
                await self.store.create_assessment_candidates(new_candidates)
            for candidate in new_candidates:
                enrolled[candidate.candidate_id] = candidate

        rows = []
        for email in emails:
            row = await self._send_invitation(assessment, email, enrolled[users[email].id].token, data.locale)
            await self.store.create_candidate_emails([row])
            rows.append(row)

        failed = sum(1 for row in rows if row.error_message)
        logger.info(
            f"Enrolled {len(new_candidates)} candidates in assessment {assessment.id}, "
            f"{len(rows) - failed} invitations sent, {failed} failed"
        )
        return {"count": len(new_candidates), "sent": len(rows) - failed, "failed": failed}

    async def _send_invitation(
        self,
        assessment: Assessment,
        email: str,
        token: Optional[str],
        locale: Optional[str]
    ) -> AssessmentCandidateEmail:
        content = InvitationContent(
            assessment_id=assessment.id,
            title=assessment.title,
            description=assessment.description,
            link=invitation_link(self.settings.APP_URL, assessment.id, token),
            company=self.settings.COMPANY_NAME
        )
        try:
            result = await self.mailer.send_invitation(email, locale or self.settings.DEFAULT_LOCALE, content)
        except NotificationError as e:
            logger.warning(
                f"Invitation to {email} failed: {e.message}",
                extra={"data": {"assessment_id": assessment.id, "status_code": e.status_code}}
            )
            return AssessmentCandidateEmail(
                assessment_id=assessment.id, email=email,
                status_code=e.status_code, error_message=e.message
            )
        except Exception as e:
            logger.exception(
                f"Invitation to {email} failed unexpectedly",
                extra={"data": {"assessment_id": assessment.id}}
            )
            return AssessmentCandidateEmail(
                assessment_id=assessment.id, email=email,
                status_code=500, error_message=str(e) or type(e).__name__
            )
        return AssessmentCandidateEmail(
            assessment_id=assessment.id, email=email,
            status_code=result.status_code, error_message=result.error_message
        )

    async def create_candidate_emails(self, rows: Sequence[Mapping[str, Any]]) -> Dict[str, int]:
        """
        Bulk-create invitation delivery rows.

        Every row is checked before anything is written.

        Returns:
            ``{"count": n}``
        """
        parsed = [CandidateEmailRow.parse(row) for row in rows]
        count = await self.store.create_candidate_emails([
            AssessmentCandidateEmail(
                assessment_id=row.assessment_id,
                email=row.email,
                status_code=row.status_code,
                error_message=row.error_message
            )
            for row in parsed
        ])
        return {"count": count}

    @validate_args(AcceptCandidateRequest)
    async def accept_candidate(self, data: AcceptCandidateRequest) -> AssessmentCandidate:
        """
        Accept an invitation.

        A user who arrives through a shared link has no candidate row yet; one
        is created already ACCEPTED. An invited candidate must present the
        token from their invitation.

        Raises:
            NotFoundError: If the assessment or user doesn't exist
            AssessmentError: If the token doesn't match the invitation
            InvalidStatusTransition: If the candidate has already completed
        """
        if await self.store.get_assessment(data.assessment_id) is None:
            raise NotFoundError("Assessment", data.assessment_id)
        if await self.store.get_user(data.user_id) is None:
            raise NotFoundError("User", data.user_id)

        async with self.store.transaction():
            candidate = await self.store.get_assessment_candidate(data.assessment_id, data.user_id)
            if candidate is None:
                candidate = AssessmentCandidate(
                    assessment_id=data.assessment_id,
                    candidate_id=data.user_id,
                    status=CandidateStatus.ACCEPTED,
                    token=data.token,
                    accepted_at=utcnow()
                )
                await self.store.create_assessment_candidates([candidate])
            else:
                if candidate.token and candidate.token != data.token:
                    raise AssessmentError(f"Invalid invitation token for assessment {data.assessment_id}")
                status = candidate.status.advance(CandidateStatus.ACCEPTED)
                if status is candidate.status:
                    return candidate
                candidate.status = status
                candidate.accepted_at = utcnow()
                candidate = await self.store.update_assessment_candidate(candidate)

            await self.store.create_activity(CandidateActivity(
                user_id=data.user_id, assessment_id=data.assessment_id, action=UserAction.ACCEPT
            ))

        logger.info(f"Candidate {data.user_id} accepted assessment {data.assessment_id}")
        return candidate

    @validate_args(CandidateStatusRequest)
    async def update_candidate_status(self, data: CandidateStatusRequest) -> AssessmentCandidate:
        """Move a candidate forward; moving backwards raises InvalidStatusTransition."""
        candidate = await self.store.get_assessment_candidate(data.assessment_id, data.candidate_id)
        if candidate is None:
            raise NotFoundError("AssessmentCandidate", (data.assessment_id, data.candidate_id))
        candidate.status = candidate.status.advance(data.status or CandidateStatus.COMPLETED)
        return await self.store.update_assessment_candidate(candidate)

    # Submissions

    async def create_candidate_submission(self, data: Mapping[str, Any]) -> CandidateSubmission:
        return await self.submissions.create_candidate_submission(data)

    async def update_candidate_submission(self, data: Mapping[str, Any]) -> CandidateSubmission:
        return await self.submissions.update_candidate_submission(data)
