"""
Assessment Domain Models

This module defines the core data models for the assessment workflow,
including assessments, candidates, results, attempts and point categories,
together with the status state machines that drive them.
"""

import uuid
import enum
import datetime
from typing import Dict, List, Any, Optional
from dataclasses import dataclass, field

from codeassess.common.exceptions import InvalidStatusTransition
from codeassess.common.serialization import SerializableMixin


def new_id() -> str:
    """Generate a new entity identifier."""
    return str(uuid.uuid4())


def utcnow() -> datetime.datetime:
    """Naive UTC timestamp, matching the relational store's DateTime columns."""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


class _MonotonicStatus(enum.Enum):
    """Status enum whose members may only move forward in declaration order."""

    @property
    def rank(self) -> int:
        return list(type(self)).index(self)

    def advance(self, target: "_MonotonicStatus", strict: bool = True) -> "_MonotonicStatus":
        """
        Return the state reached by moving towards ``target``.

        Args:
            target: Requested state
            strict: Raise on a backwards move instead of keeping the current state

        Returns:
            The new state

        Raises:
            InvalidStatusTransition: If the move is backwards and strict is set
        """
        if target.rank >= self.rank:
            return target
        if strict:
            raise InvalidStatusTransition(type(self).__name__, self, target)
        return self


class ResultStatus(_MonotonicStatus):
    """Status of a candidate's result for one quiz of an assessment."""
    PENDING = "PENDING"
    STARTED = "STARTED"
    COMPLETED = "COMPLETED"


class CandidateStatus(_MonotonicStatus):
    """Status of a candidate within an assessment."""
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    COMPLETED = "COMPLETED"


class UserAction(enum.Enum):
    """Kinds of candidate activity recorded in the audit log."""
    ACCEPT = "accept"
    COMPLETE = "complete"


def start_result(status: ResultStatus) -> ResultStatus:
    """Opening a quiz moves a result to STARTED; a completed result stays completed."""
    return status.advance(ResultStatus.STARTED, strict=False)


def complete_result(status: ResultStatus) -> ResultStatus:
    """Recording a real attempt completes the result."""
    return status.advance(ResultStatus.COMPLETED)


@dataclass
class User(SerializableMixin):
    """A platform user: assessment owner or candidate."""

    __serializable_fields__ = ["id", "email", "name"]

    email: str
    name: Optional[str] = None
    id: str = field(default_factory=new_id)
    created_at: datetime.datetime = field(default_factory=utcnow)

    @property
    def display_name(self) -> str:
        """Stored name, or the local part of the email address."""
        if self.name:
            return self.name
        return self.email.split("@", 1)[0]


@dataclass
class DifficultyLevel(SerializableMixin):
    """Difficulty tier of a quiz, e.g. "easy"."""

    __serializable_fields__ = ["id", "name"]

    id: int
    name: str


@dataclass
class CodeLanguage(SerializableMixin):
    """Programming language a quiz is written for."""

    __serializable_fields__ = ["id", "name"]

    id: int
    name: str


@dataclass
class Quiz(SerializableMixin):
    """A single coding problem."""

    __serializable_fields__ = [
        "id", "title", "instruction", "user_id", "difficulty_level_id",
        "code_language_id", "difficulty_level"
    ]

    title: str
    instruction: Optional[str] = None
    user_id: Optional[str] = None
    difficulty_level_id: Optional[int] = None
    code_language_id: Optional[int] = None
    difficulty_level: Optional[DifficultyLevel] = None
    id: str = field(default_factory=new_id)

    @property
    def difficulty_name(self) -> Optional[str]:
        return self.difficulty_level.name if self.difficulty_level else None


@dataclass
class Assessment(SerializableMixin):
    """A timed bundle of quizzes assigned to candidates by an owner."""

    __serializable_fields__ = [
        "id", "owner_id", "title", "description", "start_at", "end_at", "created_at"
    ]

    owner_id: str
    title: str
    description: str
    start_at: Optional[datetime.datetime] = None
    end_at: Optional[datetime.datetime] = None
    id: str = field(default_factory=new_id)
    created_at: datetime.datetime = field(default_factory=utcnow)


@dataclass
class AssessmentQuiz:
    """Link between an assessment and one of its quizzes."""

    assessment_id: str
    quiz_id: str
    quiz: Optional[Quiz] = None


@dataclass
class AssessmentCandidate(SerializableMixin):
    """A candidate invited to (or enrolled in) an assessment."""

    __serializable_fields__ = [
        "assessment_id", "candidate_id", "status", "accepted_at", "created_at"
    ]

    assessment_id: str
    candidate_id: str
    status: CandidateStatus = CandidateStatus.PENDING
    token: Optional[str] = None
    accepted_at: Optional[datetime.datetime] = None
    created_at: datetime.datetime = field(default_factory=utcnow)
    candidate: Optional[User] = None

    def __post_init__(self):
        if isinstance(self.status, str):
            self.status = CandidateStatus(self.status)


@dataclass
class AssessmentCandidateEmail(SerializableMixin):
    """Delivery log row for one invitation email."""

    __serializable_fields__ = [
        "id", "assessment_id", "email", "status_code", "error_message", "created_at"
    ]

    assessment_id: str
    email: str
    status_code: int
    error_message: str
    id: str = field(default_factory=new_id)
    created_at: datetime.datetime = field(default_factory=utcnow)


@dataclass
class Submission(SerializableMixin):
    """One code snapshot submitted by a user for a quiz."""

    __serializable_fields__ = ["id", "user_id", "quiz_id", "code", "created_at"]

    user_id: str
    quiz_id: str
    code: str
    id: str = field(default_factory=new_id)
    created_at: datetime.datetime = field(default_factory=utcnow)


@dataclass
class AssessmentQuizSubmission(SerializableMixin):
    """
    Attempt slot on a result.

    A slot without a submission is an open placeholder handed out when the
    candidate starts the quiz; it becomes a real attempt once code is bound.
    """

    __serializable_fields__ = [
        "id", "assessment_result_id", "submission_id", "sequence", "created_at", "submission"
    ]

    assessment_result_id: str
    sequence: int = 0
    submission_id: Optional[str] = None
    submission: Optional[Submission] = None
    id: str = field(default_factory=new_id)
    created_at: datetime.datetime = field(default_factory=utcnow)

    @property
    def is_attempt(self) -> bool:
        return self.submission_id is not None


@dataclass
class AssessmentResult(SerializableMixin):
    """Aggregate scoring record of one candidate for one quiz of an assessment."""

    __serializable_fields__ = [
        "id", "assessment_id", "candidate_id", "quiz_id", "status",
        "total_point", "assessment_quiz_submissions", "created_at", "updated_at"
    ]

    assessment_id: str
    candidate_id: str
    quiz_id: str
    status: ResultStatus = ResultStatus.STARTED
    total_point: float = 0
    assessment_quiz_submissions: List[AssessmentQuizSubmission] = field(default_factory=list)
    id: str = field(default_factory=new_id)
    created_at: datetime.datetime = field(default_factory=utcnow)
    updated_at: datetime.datetime = field(default_factory=utcnow)

    def __post_init__(self):
        if isinstance(self.status, str):
            self.status = ResultStatus(self.status)
        if self.total_point < 0:
            raise ValueError("total_point cannot be negative")

    @property
    def attempts(self) -> List[AssessmentQuizSubmission]:
        """Real attempts, oldest first."""
        return sorted(
            (s for s in self.assessment_quiz_submissions if s.is_attempt),
            key=lambda s: s.sequence
        )

    @property
    def latest_attempt(self) -> Optional[AssessmentQuizSubmission]:
        attempts = self.attempts
        return attempts[-1] if attempts else None

    def open_slot(self) -> Optional[AssessmentQuizSubmission]:
        """The placeholder slot waiting for code, if any."""
        for slot in self.assessment_quiz_submissions:
            if not slot.is_attempt:
                return slot
        return None

    def next_sequence(self) -> int:
        if not self.assessment_quiz_submissions:
            return 0
        return max(s.sequence for s in self.assessment_quiz_submissions) + 1


@dataclass
class AssessmentPoint(SerializableMixin):
    """Globally configured point category, e.g. ``speedPoint``."""

    __serializable_fields__ = ["id", "name", "point"]

    name: str
    point: float
    id: str = field(default_factory=new_id)


@dataclass
class QuizPointRecord:
    """Point a user currently holds for a quiz."""

    user_id: str
    quiz_id: str
    point: float
    id: str = field(default_factory=new_id)
    updated_at: datetime.datetime = field(default_factory=utcnow)


@dataclass
class SubmissionPoint:
    """Points one submission earned from one point category."""

    submission_id: str
    user_id: str
    assessment_point_id: str
    point: float
    id: str = field(default_factory=new_id)


@dataclass
class CandidateActivity(SerializableMixin):
    """Append-only audit record of a candidate action."""

    __serializable_fields__ = ["id", "user_id", "assessment_id", "action", "created_at"]

    user_id: str
    assessment_id: str
    action: UserAction
    id: str = field(default_factory=new_id)
    created_at: datetime.datetime = field(default_factory=utcnow)

    def __post_init__(self):
        if isinstance(self.action, str):
            self.action = UserAction(self.action)


# Read models assembled for callers

@dataclass
class QuizPointSummary:
    """Points of an assessment's quizzes."""

    total_point: float
    quiz_points: Dict[str, float]
    assigned_quizzes: List[Quiz]


@dataclass
class CandidateSubmission:
    """Result and open attempt slot handed out when a candidate starts a quiz."""

    result: AssessmentResult
    attempt: AssessmentQuizSubmission


@dataclass
class QuizResultSummary(SerializableMixin):
    """One quiz bucket of a candidate's submissions summary."""

    __serializable_fields__ = [
        "quiz_id", "result_id", "status", "total_point", "assessment_quiz_submissions"
    ]

    quiz_id: str
    result_id: Optional[str] = None
    status: ResultStatus = ResultStatus.PENDING
    total_point: float = 0
    assessment_quiz_submissions: List[AssessmentQuizSubmission] = field(default_factory=list)

    @classmethod
    def from_result(cls, quiz_id: str, result: Optional[AssessmentResult]) -> "QuizResultSummary":
        """Summarize a result; only the most recent real attempt is kept."""
        if result is None:
            return cls(quiz_id=quiz_id)
        latest = result.latest_attempt
        return cls(
            quiz_id=quiz_id,
            result_id=result.id,
            status=result.status,
            total_point=result.total_point,
            assessment_quiz_submissions=[latest] if latest else []
        )


@dataclass
class CandidateSubmissions(SerializableMixin):
    """Per-candidate submissions summary, one bucket per assessment quiz."""

    __serializable_fields__ = ["candidate_id", "name", "email", "data"]

    candidate_id: str
    name: str
    email: str
    data: List[QuizResultSummary] = field(default_factory=list)

    @property
    def completed_count(self) -> int:
        return sum(1 for d in self.data if d.status is ResultStatus.COMPLETED)


@dataclass
class CandidateView(SerializableMixin):
    """Candidate as listed on an assessment."""

    __serializable_fields__ = ["id", "email", "name", "status", "accepted_at"]

    id: str
    email: str
    name: str
    status: CandidateStatus
    accepted_at: Optional[datetime.datetime] = None


@dataclass
class AssessmentView(SerializableMixin):
    """Aggregate view of an assessment for display and scoring."""

    __serializable_fields__ = ["data", "quizzes", "candidates", "submissions"]

    data: Assessment
    quizzes: List[Quiz]
    candidates: List[CandidateView]
    submissions: List[CandidateSubmissions]


@dataclass
class AssessmentSummary(SerializableMixin):
    """Listing projection of an assessment."""

    __serializable_fields__ = [
        "id", "title", "description", "owner_name", "quiz_ids", "candidates", "created_at"
    ]

    id: str
    title: str
    description: str
    owner_name: Optional[str]
    quiz_ids: List[str]
    candidates: List[Dict[str, Any]]
    created_at: datetime.datetime
