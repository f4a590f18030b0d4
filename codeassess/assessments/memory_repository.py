"""
Memory Assessment Store Module

This module provides an in-memory implementation of the AssessmentStore
interface for development and testing purposes.

Records are copied on the way in and out, foreign keys are checked the way a
relational store would check them, and ``transaction()`` restores a snapshot
when the unit of work fails.
"""

import copy
import dataclasses
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Sequence, Tuple

from codeassess.common.exceptions import ConflictError, DatabaseError, NotFoundError
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
    utcnow,
)
from codeassess.assessments.repositories import AssessmentStore

# Setup logging
logger = logging.getLogger(__name__)

_TABLES = (
    "_users", "_difficulty_levels", "_code_languages", "_quizzes", "_points",
    "_assessments", "_assessment_quizzes", "_candidates", "_candidate_emails",
    "_results", "_slots", "_submissions", "_submission_points", "_quiz_points",
    "_activities",
)


class MemoryAssessmentStore(AssessmentStore):
    """
    In-memory implementation of the AssessmentStore.

    This implementation stores records in dictionaries and is intended for
    development and testing purposes only.
    """

    def __init__(self):
        self._users: Dict[str, User] = {}
        self._difficulty_levels: Dict[int, DifficultyLevel] = {}
        self._code_languages: Dict[int, CodeLanguage] = {}
        self._quizzes: Dict[str, Quiz] = {}
        self._points: Dict[str, AssessmentPoint] = {}
        self._assessments: Dict[str, Assessment] = {}
        self._assessment_quizzes: Dict[Tuple[str, str], AssessmentQuiz] = {}
        self._candidates: Dict[Tuple[str, str], AssessmentCandidate] = {}
        self._candidate_emails: Dict[str, AssessmentCandidateEmail] = {}
        self._results: Dict[str, AssessmentResult] = {}
        self._slots: Dict[str, AssessmentQuizSubmission] = {}
        self._submissions: Dict[str, Submission] = {}
        self._submission_points: Dict[str, SubmissionPoint] = {}
        self._quiz_points: Dict[Tuple[str, str], QuizPointRecord] = {}
        self._activities: Dict[str, CandidateActivity] = {}
        self._depth = 0

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._depth:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            return

        snapshot = {name: copy.deepcopy(getattr(self, name)) for name in _TABLES}
        self._depth = 1
        try:
            yield
        except Exception:
            for name, table in snapshot.items():
                setattr(self, name, table)
            logger.debug("Rolled back in-memory unit of work")
            raise
        finally:
            self._depth = 0

    # Helpers

    @staticmethod
    def _copy(record: Any, **detached: Any) -> Any:
        """Copy a record, dropping attached relations before storing it."""
        if detached:
            record = dataclasses.replace(record, **detached)
        return copy.deepcopy(record)

    @staticmethod
    def _require(table: Dict, key: Any, entity: str) -> None:
        if key not in table:
            raise DatabaseError(f"foreign key violation: {entity} {key} does not exist")

    def _quiz_with_level(self, quiz_id: str) -> Optional[Quiz]:
        quiz = self._quizzes.get(quiz_id)
        if quiz is None:
            return None
        quiz = copy.deepcopy(quiz)
        if quiz.difficulty_level_id is not None:
            quiz.difficulty_level = copy.deepcopy(self._difficulty_levels.get(quiz.difficulty_level_id))
        return quiz

    def _result_with_attempts(self, result: AssessmentResult) -> AssessmentResult:
        result = copy.deepcopy(result)
        slots = sorted(
            (s for s in self._slots.values() if s.assessment_result_id == result.id),
            key=lambda s: s.sequence
        )
        result.assessment_quiz_submissions = [self._slot_with_submission(s) for s in slots]
        return result

    def _slot_with_submission(self, slot: AssessmentQuizSubmission) -> AssessmentQuizSubmission:
        slot = copy.deepcopy(slot)
        if slot.submission_id is not None:
            slot.submission = copy.deepcopy(self._submissions.get(slot.submission_id))
        return slot

    # Reference data

    async def get_user(self, user_id: str) -> Optional[User]:
        return copy.deepcopy(self._users.get(user_id))

    async def get_users_by_emails(self, emails: Iterable[str]) -> List[User]:
        wanted = set(emails)
        return [copy.deepcopy(u) for u in self._users.values() if u.email in wanted]

    async def create_users(self, users: Sequence[User]) -> List[User]:
        taken = {u.email for u in self._users.values()}
        for user in users:
            if user.id in self._users or user.email in taken:
                raise ConflictError("User", user.email)
            taken.add(user.email)
        for user in users:
            self._users[user.id] = self._copy(user)
        return [copy.deepcopy(u) for u in users]

    async def save_difficulty_level(self, level: DifficultyLevel) -> DifficultyLevel:
        self._difficulty_levels[level.id] = self._copy(level)
        return level

    async def save_code_language(self, language: CodeLanguage) -> CodeLanguage:
        self._code_languages[language.id] = self._copy(language)
        return language

    async def save_quiz(self, quiz: Quiz) -> Quiz:
        if quiz.difficulty_level_id is not None:
            self._require(self._difficulty_levels, quiz.difficulty_level_id, "DifficultyLevel")
        if quiz.code_language_id is not None:
            self._require(self._code_languages, quiz.code_language_id, "CodeLanguage")
        self._quizzes[quiz.id] = self._copy(quiz, difficulty_level=None)
        return self._quiz_with_level(quiz.id)

    async def get_quizzes(self, quiz_ids: Iterable[str]) -> List[Quiz]:
        quizzes = [self._quiz_with_level(quiz_id) for quiz_id in quiz_ids]
        return [q for q in quizzes if q is not None]

    async def save_assessment_point(self, point: AssessmentPoint) -> AssessmentPoint:
        self._points[point.id] = self._copy(point)
        return point

    async def list_assessment_points(self) -> List[AssessmentPoint]:
        return [copy.deepcopy(p) for p in self._points.values()]

    # Assessments

    async def create_assessment(self, assessment: Assessment) -> Assessment:
        self._require(self._users, assessment.owner_id, "User")
        if assessment.id in self._assessments:
            raise ConflictError("Assessment", assessment.id)
        self._assessments[assessment.id] = self._copy(assessment)
        return copy.deepcopy(assessment)

    async def get_assessment(self, assessment_id: str) -> Optional[Assessment]:
        return copy.deepcopy(self._assessments.get(assessment_id))

    async def update_assessment(self, assessment: Assessment) -> Assessment:
        if assessment.id not in self._assessments:
            raise NotFoundError("Assessment", assessment.id)
        self._assessments[assessment.id] = self._copy(assessment)
        return copy.deepcopy(assessment)

    async def delete_assessment(self, assessment_id: str) -> Optional[Assessment]:
        if assessment_id not in self._assessments:
            return None
        referenced = (
            any(a == assessment_id for a, _ in self._assessment_quizzes)
            or any(a == assessment_id for a, _ in self._candidates)
            or any(r.assessment_id == assessment_id for r in self._candidate_emails.values())
            or any(r.assessment_id == assessment_id for r in self._results.values())
        )
        if referenced:
            raise DatabaseError(f"foreign key violation: assessment {assessment_id} is still referenced")
        return self._assessments.pop(assessment_id)

    async def list_assessments(self, owner_id: str) -> List[Assessment]:
        owned = [a for a in self._assessments.values() if a.owner_id == owner_id]
        return [copy.deepcopy(a) for a in sorted(owned, key=lambda a: a.created_at)]

    # Quiz links

    async def create_assessment_quizzes(self, links: Sequence[AssessmentQuiz]) -> int:
        for link in links:
            self._require(self._assessments, link.assessment_id, "Assessment")
            self._require(self._quizzes, link.quiz_id, "Quiz")
            if (link.assessment_id, link.quiz_id) in self._assessment_quizzes:
                raise ConflictError("AssessmentQuiz", (link.assessment_id, link.quiz_id))
        for link in links:
            self._assessment_quizzes[(link.assessment_id, link.quiz_id)] = self._copy(link, quiz=None)
        return len(links)

    async def list_assessment_quizzes(self, assessment_id: str) -> List[AssessmentQuiz]:
        return [
            AssessmentQuiz(link.assessment_id, link.quiz_id, self._quiz_with_level(link.quiz_id))
            for (a, _), link in self._assessment_quizzes.items()
            if a == assessment_id
        ]

    async def delete_assessment_quiz(self, assessment_id: str, quiz_id: str) -> Optional[AssessmentQuiz]:
        return self._assessment_quizzes.pop((assessment_id, quiz_id), None)

    async def delete_assessment_quizzes(self, assessment_id: str) -> int:
        keys = [key for key in self._assessment_quizzes if key[0] == assessment_id]
        for key in keys:
            del self._assessment_quizzes[key]
        return len(keys)

    # Candidates

    async def create_assessment_candidates(self, candidates: Sequence[AssessmentCandidate]) -> int:
        for candidate in candidates:
            self._require(self._assessments, candidate.assessment_id, "Assessment")
            self._require(self._users, candidate.candidate_id, "User")
            if (candidate.assessment_id, candidate.candidate_id) in self._candidates:
                raise ConflictError("AssessmentCandidate", (candidate.assessment_id, candidate.candidate_id))
        for candidate in candidates:
            key = (candidate.assessment_id, candidate.candidate_id)
            self._candidates[key] = self._copy(candidate, candidate=None)
        return len(candidates)

    async def get_assessment_candidate(self, assessment_id: str, candidate_id: str) -> Optional[AssessmentCandidate]:
        candidate = self._candidates.get((assessment_id, candidate_id))
        if candidate is None:
            return None
        candidate = copy.deepcopy(candidate)
        candidate.candidate = copy.deepcopy(self._users.get(candidate_id))
        return candidate

    async def list_assessment_candidates(self, assessment_id: str) -> List[AssessmentCandidate]:
        return [
            await self.get_assessment_candidate(a, c)
            for (a, c) in list(self._candidates)
            if a == assessment_id
        ]

    async def update_assessment_candidate(self, candidate: AssessmentCandidate) -> AssessmentCandidate:
        key = (candidate.assessment_id, candidate.candidate_id)
        if key not in self._candidates:
            raise NotFoundError("AssessmentCandidate", key)
        self._candidates[key] = self._copy(candidate, candidate=None)
        return await self.get_assessment_candidate(*key)

    async def delete_assessment_candidates(self, assessment_id: str) -> int:
        keys = [key for key in self._candidates if key[0] == assessment_id]
        for key in keys:
            del self._candidates[key]
        return len(keys)

    async def create_candidate_emails(self, rows: Sequence[AssessmentCandidateEmail]) -> int:
        for row in rows:
            self._require(self._assessments, row.assessment_id, "Assessment")
        for row in rows:
            self._candidate_emails[row.id] = self._copy(row)
        return len(rows)

    async def list_candidate_emails(self, assessment_id: str) -> List[AssessmentCandidateEmail]:
        return [copy.deepcopy(r) for r in self._candidate_emails.values() if r.assessment_id == assessment_id]

    async def delete_candidate_emails(self, assessment_id: str) -> int:
        ids = [i for i, r in self._candidate_emails.items() if r.assessment_id == assessment_id]
        for row_id in ids:
            del self._candidate_emails[row_id]
        return len(ids)

    # Results and attempts

    async def create_result(self, result: AssessmentResult) -> AssessmentResult:
        self._require(self._assessments, result.assessment_id, "Assessment")
        self._require(self._users, result.candidate_id, "User")
        self._require(self._quizzes, result.quiz_id, "Quiz")
        for existing in self._results.values():
            if (existing.assessment_id, existing.candidate_id, existing.quiz_id) == (
                    result.assessment_id, result.candidate_id, result.quiz_id):
                raise ConflictError("AssessmentResult", (result.assessment_id, result.candidate_id, result.quiz_id))
        self._results[result.id] = self._copy(result, assessment_quiz_submissions=[])
        return self._result_with_attempts(self._results[result.id])

    async def get_result(self, result_id: str) -> Optional[AssessmentResult]:
        result = self._results.get(result_id)
        return self._result_with_attempts(result) if result else None

    async def find_result(self, assessment_id: str, candidate_id: str, quiz_id: str) -> Optional[AssessmentResult]:
        for result in self._results.values():
            if (result.assessment_id, result.candidate_id, result.quiz_id) == (assessment_id, candidate_id, quiz_id):
                return self._result_with_attempts(result)
        return None

    async def list_results(
        self,
        assessment_id: str,
        quiz_id: Optional[str] = None,
        candidate_id: Optional[str] = None,
        status: Optional[ResultStatus] = None
    ) -> List[AssessmentResult]:
        matches = [
            r for r in self._results.values()
            if r.assessment_id == assessment_id
            and (quiz_id is None or r.quiz_id == quiz_id)
            and (candidate_id is None or r.candidate_id == candidate_id)
            and (status is None or r.status is status)
        ]
        return [self._result_with_attempts(r) for r in sorted(matches, key=lambda r: r.created_at)]

    async def update_result(self, result: AssessmentResult) -> AssessmentResult:
        if result.id not in self._results:
            raise NotFoundError("AssessmentResult", result.id)
        result.updated_at = utcnow()
        self._results[result.id] = self._copy(result, assessment_quiz_submissions=[])
        return self._result_with_attempts(self._results[result.id])

    async def delete_result(self, result_id: str) -> Optional[AssessmentResult]:
        if result_id not in self._results:
            return None
        if any(s.assessment_result_id == result_id for s in self._slots.values()):
            raise DatabaseError(f"foreign key violation: result {result_id} still has attempts")
        return self._results.pop(result_id)

    async def delete_results(self, assessment_id: str) -> int:
        ids = [i for i, r in self._results.items() if r.assessment_id == assessment_id]
        if any(s.assessment_result_id in ids for s in self._slots.values()):
            raise DatabaseError(f"foreign key violation: results of {assessment_id} still have attempts")
        for result_id in ids:
            del self._results[result_id]
        return len(ids)

    async def create_quiz_submission(self, slot: AssessmentQuizSubmission) -> AssessmentQuizSubmission:
        self._require(self._results, slot.assessment_result_id, "AssessmentResult")
        if slot.submission_id is not None:
            self._require(self._submissions, slot.submission_id, "Submission")
        self._slots[slot.id] = self._copy(slot, submission=None)
        return self._slot_with_submission(self._slots[slot.id])

    async def get_quiz_submission(self, slot_id: str) -> Optional[AssessmentQuizSubmission]:
        slot = self._slots.get(slot_id)
        return self._slot_with_submission(slot) if slot else None

    async def update_quiz_submission(self, slot: AssessmentQuizSubmission) -> AssessmentQuizSubmission:
        if slot.id not in self._slots:
            raise NotFoundError("AssessmentQuizSubmission", slot.id)
        if slot.submission_id is not None:
            self._require(self._submissions, slot.submission_id, "Submission")
        self._slots[slot.id] = self._copy(slot, submission=None)
        return self._slot_with_submission(self._slots[slot.id])

    async def delete_quiz_submissions(self, slot_ids: Iterable[str]) -> int:
        count = 0
        for slot_id in slot_ids:
            if self._slots.pop(slot_id, None) is not None:
                count += 1
        return count

    async def delete_result_quiz_submissions(self, result_ids: Iterable[str]) -> int:
        wanted = set(result_ids)
        ids = [i for i, s in self._slots.items() if s.assessment_result_id in wanted]
        return await self.delete_quiz_submissions(ids)

    # Submissions and points

    async def create_submission(self, submission: Submission) -> Submission:
        self._require(self._users, submission.user_id, "User")
        self._require(self._quizzes, submission.quiz_id, "Quiz")
        self._submissions[submission.id] = self._copy(submission)
        return copy.deepcopy(submission)

    async def create_submission_points(self, points: Sequence[SubmissionPoint]) -> int:
        for point in points:
            self._require(self._submissions, point.submission_id, "Submission")
            self._require(self._points, point.assessment_point_id, "AssessmentPoint")
        for point in points:
            self._submission_points[point.id] = self._copy(point)
        return len(points)

    async def get_quiz_point(self, user_id: str, quiz_id: str) -> Optional[QuizPointRecord]:
        return copy.deepcopy(self._quiz_points.get((user_id, quiz_id)))

    async def save_quiz_point(self, record: QuizPointRecord) -> QuizPointRecord:
        self._require(self._users, record.user_id, "User")
        self._require(self._quizzes, record.quiz_id, "Quiz")
        existing = self._quiz_points.get((record.user_id, record.quiz_id))
        if existing is not None:
            record = dataclasses.replace(record, id=existing.id)
        record.updated_at = utcnow()
        self._quiz_points[(record.user_id, record.quiz_id)] = self._copy(record)
        return copy.deepcopy(record)

    async def count_quiz_points(
        self,
        quiz_id: str,
        exclude_user_id: Optional[str] = None,
        below: Optional[float] = None
    ) -> int:
        return sum(
            1 for (user_id, q), record in self._quiz_points.items()
            if q == quiz_id
            and user_id != exclude_user_id
            and (below is None or record.point < below)
        )

    # Activity log

    async def create_activity(self, activity: CandidateActivity) -> CandidateActivity:
        self._require(self._users, activity.user_id, "User")
        self._activities[activity.id] = self._copy(activity)
        return copy.deepcopy(activity)

    async def list_activities(self, assessment_id: str) -> List[CandidateActivity]:
        matches = [a for a in self._activities.values() if a.assessment_id == assessment_id]
        return [copy.deepcopy(a) for a in sorted(matches, key=lambda a: a.created_at)]

    # Memory-only helpers, not part of the AssessmentStore interface

    def count_rows(self) -> Dict[str, int]:
        """Row count per table, used to check that nothing is left orphaned."""
        return {name.lstrip("_"): len(getattr(self, name)) for name in _TABLES}

    def clear(self) -> None:
        """Drop every record."""
        for name in _TABLES:
            getattr(self, name).clear()
