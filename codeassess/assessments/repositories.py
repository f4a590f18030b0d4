"""
Assessment Store Interface

This module defines the persistence contract the assessment workflow depends
on. Production wiring supplies the SQLAlchemy implementation; tests and local
development use the in-memory one.
"""

from abc import ABC, abstractmethod
from typing import AsyncContextManager, Iterable, List, Optional, Sequence

from codeassess.assessments.models import (
    Assessment,
    AssessmentCandidate,
    AssessmentCandidateEmail,
    AssessmentPoint,
    AssessmentQuiz,
    AssessmentQuizSubmission,
    AssessmentResult,
    CandidateActivity,
    CodeLanguage,
    DifficultyLevel,
    Quiz,
    QuizPointRecord,
    ResultStatus,
    Submission,
    SubmissionPoint,
    User,
)


class AssessmentStore(ABC):
    """
    Abstract relational store for the assessment entities.

    Every method is a single unit of work unless it runs inside
    ``transaction()``, in which case everything commits or rolls back
    together. Infrastructure failures surface as DatabaseError; unique
    violations on create surface as ConflictError.
    """

    @abstractmethod
    def transaction(self) -> AsyncContextManager[None]:
        """
        Open a unit of work.

        Usage:
            async with store.transaction():
                await store.create_assessment(...)
                await store.create_assessment_quizzes(...)

        Nested calls join the outermost unit of work.
        """
        pass

    # Reference data

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]:
        pass

    @abstractmethod
    async def get_users_by_emails(self, emails: Iterable[str]) -> List[User]:
        pass

    @abstractmethod
    async def create_users(self, users: Sequence[User]) -> List[User]:
        pass

    @abstractmethod
    async def save_difficulty_level(self, level: DifficultyLevel) -> DifficultyLevel:
        pass

    @abstractmethod
    async def save_code_language(self, language: CodeLanguage) -> CodeLanguage:
        pass

    @abstractmethod
    async def save_quiz(self, quiz: Quiz) -> Quiz:
        pass

    @abstractmethod
    async def get_quizzes(self, quiz_ids: Iterable[str]) -> List[Quiz]:
        """
        Get quizzes by id, each with its difficulty level attached.

        Unknown ids are skipped.
        """
        pass

    @abstractmethod
    async def save_assessment_point(self, point: AssessmentPoint) -> AssessmentPoint:
        pass

    @abstractmethod
    async def list_assessment_points(self) -> List[AssessmentPoint]:
        pass

    # Assessments

    @abstractmethod
    async def create_assessment(self, assessment: Assessment) -> Assessment:
        pass

    @abstractmethod
    async def get_assessment(self, assessment_id: str) -> Optional[Assessment]:
        pass

    @abstractmethod
    async def update_assessment(self, assessment: Assessment) -> Assessment:
        """
        Persist title, description and time window of an assessment.

        Raises:
            NotFoundError: If the assessment doesn't exist
        """
        pass

    @abstractmethod
    async def delete_assessment(self, assessment_id: str) -> Optional[Assessment]:
        """
        Delete the assessment row itself.

        Dependent rows must be removed first; the store refuses to leave
        orphans behind.

        Returns:
            The deleted assessment, or None if it did not exist
        """
        pass

    @abstractmethod
    async def list_assessments(self, owner_id: str) -> List[Assessment]:
        """Assessments owned by a user, oldest first."""
        pass

    # Quiz links

    @abstractmethod
    async def create_assessment_quizzes(self, links: Sequence[AssessmentQuiz]) -> int:
        """Bulk-create quiz links and return the number created."""
        pass

    @abstractmethod
    async def list_assessment_quizzes(self, assessment_id: str) -> List[AssessmentQuiz]:
        """Quiz links of an assessment with the quiz and its difficulty attached."""
        pass

    @abstractmethod
    async def delete_assessment_quiz(self, assessment_id: str, quiz_id: str) -> Optional[AssessmentQuiz]:
        pass

    @abstractmethod
    async def delete_assessment_quizzes(self, assessment_id: str) -> int:
        pass

    # Candidates

    @abstractmethod
    async def create_assessment_candidates(self, candidates: Sequence[AssessmentCandidate]) -> int:
        pass

    @abstractmethod
    async def get_assessment_candidate(self, assessment_id: str, candidate_id: str) -> Optional[AssessmentCandidate]:
        pass

    @abstractmethod
    async def list_assessment_candidates(self, assessment_id: str) -> List[AssessmentCandidate]:
        """Candidates of an assessment with their user attached, in enrolment order."""
        pass

    @abstractmethod
    async def update_assessment_candidate(self, candidate: AssessmentCandidate) -> AssessmentCandidate:
        pass

    @abstractmethod
    async def delete_assessment_candidates(self, assessment_id: str) -> int:
        pass

    @abstractmethod
    async def create_candidate_emails(self, rows: Sequence[AssessmentCandidateEmail]) -> int:
        pass

    @abstractmethod
    async def list_candidate_emails(self, assessment_id: str) -> List[AssessmentCandidateEmail]:
        pass

    @abstractmethod
    async def delete_candidate_emails(self, assessment_id: str) -> int:
        pass

    # Results and attempts

    @abstractmethod
    async def create_result(self, result: AssessmentResult) -> AssessmentResult:
        """
        Create a result row.

        Raises:
            ConflictError: If a result already exists for the
                (assessment, candidate, quiz) triple
        """
        pass

    @abstractmethod
    async def get_result(self, result_id: str) -> Optional[AssessmentResult]:
        pass

    @abstractmethod
    async def find_result(self, assessment_id: str, candidate_id: str, quiz_id: str) -> Optional[AssessmentResult]:
        pass

    @abstractmethod
    async def list_results(
        self,
        assessment_id: str,
        quiz_id: Optional[str] = None,
        candidate_id: Optional[str] = None,
        status: Optional[ResultStatus] = None
    ) -> List[AssessmentResult]:
        """
        Results of an assessment, with attempts and their submissions attached.

        Args:
            assessment_id: Assessment to read
            quiz_id: Optional quiz filter
            candidate_id: Optional candidate filter
            status: Optional status filter

        Returns:
            Matching results, oldest first
        """
        pass

    @abstractmethod
    async def update_result(self, result: AssessmentResult) -> AssessmentResult:
        """Persist status and total point of a result."""
        pass

    @abstractmethod
    async def delete_result(self, result_id: str) -> Optional[AssessmentResult]:
        pass

    @abstractmethod
    async def delete_results(self, assessment_id: str) -> int:
        pass

    @abstractmethod
    async def create_quiz_submission(self, slot: AssessmentQuizSubmission) -> AssessmentQuizSubmission:
        pass

    @abstractmethod
    async def get_quiz_submission(self, slot_id: str) -> Optional[AssessmentQuizSubmission]:
        pass

    @abstractmethod
    async def update_quiz_submission(self, slot: AssessmentQuizSubmission) -> AssessmentQuizSubmission:
        pass

    @abstractmethod
    async def delete_quiz_submissions(self, slot_ids: Iterable[str]) -> int:
        pass

    @abstractmethod
    async def delete_result_quiz_submissions(self, result_ids: Iterable[str]) -> int:
        """Delete every attempt slot of the given results."""
        pass

    # Submissions and points

    @abstractmethod
    async def create_submission(self, submission: Submission) -> Submission:
        pass

    @abstractmethod
    async def create_submission_points(self, points: Sequence[SubmissionPoint]) -> int:
        pass

    @abstractmethod
    async def get_quiz_point(self, user_id: str, quiz_id: str) -> Optional[QuizPointRecord]:
        pass

    @abstractmethod
    async def save_quiz_point(self, record: QuizPointRecord) -> QuizPointRecord:
        """Insert or replace the point a user holds for a quiz."""
        pass

    @abstractmethod
    async def count_quiz_points(
        self,
        quiz_id: str,
        exclude_user_id: Optional[str] = None,
        below: Optional[float] = None
    ) -> int:
        """
        Count users holding a point for a quiz.

        Args:
            quiz_id: Quiz to count for
            exclude_user_id: User left out of the population
            below: Only count points strictly below this value

        Returns:
            Number of matching point records
        """
        pass

    # Activity log

    @abstractmethod
    async def create_activity(self, activity: CandidateActivity) -> CandidateActivity:
        pass

    @abstractmethod
    async def list_activities(self, assessment_id: str) -> List[CandidateActivity]:
        pass
