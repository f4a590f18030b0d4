"""
SQL Assessment Store Module

This module implements the AssessmentStore interface on top of SQLAlchemy
1.4 async sessions.

Each coroutine gets its own session through a context variable: a call made
inside ``transaction()`` joins that session, any other call runs in a
short-lived session of its own that commits when the call returns.
"""

from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, AsyncIterator, Iterable, List, Optional, Sequence

from sqlalchemy import and_, delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload, sessionmaker

from codeassess.common.exceptions import ConflictError, DatabaseError, NotFoundError
from codeassess.common.logger import app_logger
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
from codeassess.database.models import (
    AssessmentCandidateEmailModel,
    AssessmentCandidateModel,
    AssessmentModel,
    AssessmentPointModel,
    AssessmentQuizModel,
    AssessmentQuizSubmissionModel,
    AssessmentResultModel,
    CandidateActivityLogModel,
    CodeLanguageModel,
    DifficultyLevelModel,
    QuizModel,
    QuizPointCollectionModel,
    SubmissionModel,
    SubmissionPointModel,
    UserModel,
)

logger = app_logger.getChild("db.assessments")


# Row to entity mapping

def _user(row: UserModel) -> User:
    return User(email=row.email, name=row.name, id=row.id, created_at=row.created_at)


def _level(row: Optional[DifficultyLevelModel]) -> Optional[DifficultyLevel]:
    return DifficultyLevel(id=row.id, name=row.name) if row is not None else None


def _quiz(row: QuizModel) -> Quiz:
    return Quiz(
        title=row.title,
        instruction=row.instruction,
        user_id=row.user_id,
        difficulty_level_id=row.difficulty_level_id,
        code_language_id=row.code_language_id,
        difficulty_level=_level(row.difficulty_level),
        id=row.id
    )


def _assessment(row: AssessmentModel) -> Assessment:
    return Assessment(
        owner_id=row.owner_id,
        title=row.title,
        description=row.description,
        start_at=row.start_at,
        end_at=row.end_at,
        id=row.id,
        created_at=row.created_at
    )


def _candidate(row: AssessmentCandidateModel) -> AssessmentCandidate:
    return AssessmentCandidate(
        assessment_id=row.assessment_id,
        candidate_id=row.candidate_id,
        status=row.status,
        token=row.token,
        accepted_at=row.accepted_at,
        created_at=row.created_at,
        candidate=_user(row.candidate) if row.candidate is not None else None
    )


def _candidate_email(row: AssessmentCandidateEmailModel) -> AssessmentCandidateEmail:
    return AssessmentCandidateEmail(
        assessment_id=row.assessment_id,
        email=row.email,
        status_code=row.status_code,
        error_message=row.error_message,
        id=row.id,
        created_at=row.created_at
    )


def _submission(row: Optional[SubmissionModel]) -> Optional[Submission]:
    if row is None:
        return None
    return Submission(user_id=row.user_id, quiz_id=row.quiz_id, code=row.code, id=row.id, created_at=row.created_at)


def _slot(row: AssessmentQuizSubmissionModel) -> AssessmentQuizSubmission:
    return AssessmentQuizSubmission(
        assessment_result_id=row.assessment_result_id,
        sequence=row.sequence,
        submission_id=row.submission_id,
        submission=_submission(row.submission),
        id=row.id,
        created_at=row.created_at
    )


def _result(row: AssessmentResultModel) -> AssessmentResult:
    return AssessmentResult(
        assessment_id=row.assessment_id,
        candidate_id=row.candidate_id,
        quiz_id=row.quiz_id,
        status=row.status,
        total_point=row.total_point,
        assessment_quiz_submissions=[_slot(s) for s in row.assessment_quiz_submissions],
        id=row.id,
        created_at=row.created_at,
        updated_at=row.updated_at
    )


def _quiz_point(row: QuizPointCollectionModel) -> QuizPointRecord:
    return QuizPointRecord(user_id=row.user_id, quiz_id=row.quiz_id, point=row.point, id=row.id,
                           updated_at=row.updated_at)


def _activity(row: CandidateActivityLogModel) -> CandidateActivity:
    return CandidateActivity(
        user_id=row.user_id,
        assessment_id=row.assessment_id,
        action=row.action,
        id=row.id,
        created_at=row.created_at
    )


_RESULT_LOAD = (
    selectinload(AssessmentResultModel.assessment_quiz_submissions)
    .selectinload(AssessmentQuizSubmissionModel.submission),
)


def _bulk_delete(model):
    # Rows already loaded in the session are left as they are
    return delete(model).execution_options(synchronize_session=False)


class SQLAssessmentStore(AssessmentStore):
    """
    SQLAlchemy implementation of the AssessmentStore.

    SQLAlchemy errors are re-raised as DatabaseError; unique violations on
    create are re-raised as ConflictError.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._current: ContextVar[Optional[AsyncSession]] = ContextVar(
            f"assessment_session_{id(self)}", default=None
        )

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._current.get() is not None:
            yield
            return

        session = self._session_factory()
        token = self._current.set(session)
        try:
            yield
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Database error, transaction rolled back: {e}")
            raise DatabaseError(str(e), e) from e
        except Exception:
            await session.rollback()
            raise
        finally:
            self._current.reset(token)
            await session.close()

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        """Session of the open transaction, or a new one for a single call."""
        async with self.transaction():
            yield self._current.get()

    async def _flush(self, session: AsyncSession, resource_type: str, identifier: Any) -> None:
        try:
            await session.flush()
        except IntegrityError as e:
            if "foreign key" in str(e.orig).lower():
                raise DatabaseError(f"foreign key violation: {e.orig}", e) from e
            raise ConflictError(resource_type, identifier) from e

    # Reference data

    async def get_user(self, user_id: str) -> Optional[User]:
        async with self._session() as session:
            row = await session.get(UserModel, user_id)
            return _user(row) if row else None

    async def get_users_by_emails(self, emails: Iterable[str]) -> List[User]:
        emails = list(emails)
        if not emails:
            return []
        async with self._session() as session:
            rows = await session.execute(select(UserModel).where(UserModel.email.in_(emails)))
            return [_user(row) for row in rows.scalars()]

    async def create_users(self, users: Sequence[User]) -> List[User]:
        async with self._session() as session:
            session.add_all([
                UserModel(id=u.id, email=u.email, name=u.name, created_at=u.created_at) for u in users
            ])
            await self._flush(session, "User", [u.email for u in users])
        return list(users)

    async def save_difficulty_level(self, level: DifficultyLevel) -> DifficultyLevel:
        async with self._session() as session:
            await session.merge(DifficultyLevelModel(id=level.id, name=level.name))
        return level

    async def save_code_language(self, language: CodeLanguage) -> CodeLanguage:
        async with self._session() as session:
            await session.merge(CodeLanguageModel(id=language.id, name=language.name))
        return language

    async def save_quiz(self, quiz: Quiz) -> Quiz:
        async with self._session() as session:
            await session.merge(QuizModel(
                id=quiz.id,
                title=quiz.title,
                instruction=quiz.instruction,
                user_id=quiz.user_id,
                difficulty_level_id=quiz.difficulty_level_id,
                code_language_id=quiz.code_language_id
            ))
            await session.flush()
        return (await self.get_quizzes([quiz.id]))[0]

    async def get_quizzes(self, quiz_ids: Iterable[str]) -> List[Quiz]:
        quiz_ids = list(quiz_ids)
        if not quiz_ids:
            return []
        async with self._session() as session:
            rows = await session.execute(
                select(QuizModel)
                .options(selectinload(QuizModel.difficulty_level))
                .where(QuizModel.id.in_(quiz_ids))
            )
            by_id = {row.id: _quiz(row) for row in rows.scalars()}
        return [by_id[quiz_id] for quiz_id in quiz_ids if quiz_id in by_id]

    async def save_assessment_point(self, point: AssessmentPoint) -> AssessmentPoint:
        async with self._session() as session:
            await session.merge(AssessmentPointModel(id=point.id, name=point.name, point=point.point))
        return point

    async def list_assessment_points(self) -> List[AssessmentPoint]:
        async with self._session() as session:
            rows = await session.execute(select(AssessmentPointModel))
            return [AssessmentPoint(name=r.name, point=r.point, id=r.id) for r in rows.scalars()]

    # Assessments

    async def create_assessment(self, assessment: Assessment) -> Assessment:
        async with self._session() as session:
            session.add(AssessmentModel(
                id=assessment.id,
                owner_id=assessment.owner_id,
                title=assessment.title,
                description=assessment.description,
                start_at=assessment.start_at,
                end_at=assessment.end_at,
                created_at=assessment.created_at
            ))
            await self._flush(session, "Assessment", assessment.id)
        return assessment

    async def get_assessment(self, assessment_id: str) -> Optional[Assessment]:
        async with self._session() as session:
            row = await session.get(AssessmentModel, assessment_id)
            return _assessment(row) if row else None

    async def update_assessment(self, assessment: Assessment) -> Assessment:
        async with self._session() as session:
            row = await session.get(AssessmentModel, assessment.id)
            if row is None:
                raise NotFoundError("Assessment", assessment.id)
            row.update({
                "title": assessment.title,
                "description": assessment.description,
                "start_at": assessment.start_at,
                "end_at": assessment.end_at,
            })
            await session.flush()
            return _assessment(row)

    async def delete_assessment(self, assessment_id: str) -> Optional[Assessment]:
        async with self._session() as session:
            row = await session.get(AssessmentModel, assessment_id)
            if row is None:
                return None
            deleted = _assessment(row)
            await session.delete(row)
            await session.flush()
            return deleted

    async def list_assessments(self, owner_id: str) -> List[Assessment]:
        async with self._session() as session:
            rows = await session.execute(
                select(AssessmentModel)
                .where(AssessmentModel.owner_id == owner_id)
                .order_by(AssessmentModel.created_at)
            )
            return [_assessment(row) for row in rows.scalars()]

    # Quiz links

    async def create_assessment_quizzes(self, links: Sequence[AssessmentQuiz]) -> int:
        async with self._session() as session:
            now = utcnow()
            session.add_all([
                AssessmentQuizModel(assessment_id=link.assessment_id, quiz_id=link.quiz_id, created_at=now)
                for link in links
            ])
            await self._flush(session, "AssessmentQuiz", [link.quiz_id for link in links])
        return len(links)

    async def list_assessment_quizzes(self, assessment_id: str) -> List[AssessmentQuiz]:
        async with self._session() as session:
            rows = await session.execute(
                select(AssessmentQuizModel)
                .options(selectinload(AssessmentQuizModel.quiz).selectinload(QuizModel.difficulty_level))
                .where(AssessmentQuizModel.assessment_id == assessment_id)
                .order_by(AssessmentQuizModel.created_at, AssessmentQuizModel.quiz_id)
            )
            return [
                AssessmentQuiz(assessment_id=row.assessment_id, quiz_id=row.quiz_id, quiz=_quiz(row.quiz))
                for row in rows.scalars()
            ]

    async def delete_assessment_quiz(self, assessment_id: str, quiz_id: str) -> Optional[AssessmentQuiz]:
        async with self._session() as session:
            row = await session.get(AssessmentQuizModel, (assessment_id, quiz_id))
            if row is None:
                return None
            await session.delete(row)
            await session.flush()
            return AssessmentQuiz(assessment_id=assessment_id, quiz_id=quiz_id)

    async def delete_assessment_quizzes(self, assessment_id: str) -> int:
        async with self._session() as session:
            result = await session.execute(
                _bulk_delete(AssessmentQuizModel).where(AssessmentQuizModel.assessment_id == assessment_id)
            )
            return result.rowcount

    # Candidates

    async def create_assessment_candidates(self, candidates: Sequence[AssessmentCandidate]) -> int:
        async with self._session() as session:
            session.add_all([
                AssessmentCandidateModel(
                    assessment_id=c.assessment_id,
                    candidate_id=c.candidate_id,
                    status=c.status.value,
                    token=c.token,
                    accepted_at=c.accepted_at,
                    created_at=c.created_at
                )
                for c in candidates
            ])
            await self._flush(session, "AssessmentCandidate", [c.candidate_id for c in candidates])
        return len(candidates)

    async def get_assessment_candidate(self, assessment_id: str, candidate_id: str) -> Optional[AssessmentCandidate]:
        async with self._session() as session:
            row = await session.get(
                AssessmentCandidateModel, (assessment_id, candidate_id),
                options=[selectinload(AssessmentCandidateModel.candidate)]
            )
            return _candidate(row) if row else None

    async def list_assessment_candidates(self, assessment_id: str) -> List[AssessmentCandidate]:
        async with self._session() as session:
            rows = await session.execute(
                select(AssessmentCandidateModel)
                .options(selectinload(AssessmentCandidateModel.candidate))
                .where(AssessmentCandidateModel.assessment_id == assessment_id)
                .order_by(AssessmentCandidateModel.created_at)
            )
            return [_candidate(row) for row in rows.scalars()]

    async def update_assessment_candidate(self, candidate: AssessmentCandidate) -> AssessmentCandidate:
        async with self._session() as session:
            row = await session.get(
                AssessmentCandidateModel, (candidate.assessment_id, candidate.candidate_id),
                options=[selectinload(AssessmentCandidateModel.candidate)]
            )
            if row is None:
                raise NotFoundError("AssessmentCandidate", (candidate.assessment_id, candidate.candidate_id))
            row.update({
                "status": candidate.status.value,
                "token": candidate.token,
                "accepted_at": candidate.accepted_at,
            })
            await session.flush()
            return _candidate(row)

    async def delete_assessment_candidates(self, assessment_id: str) -> int:
        async with self._session() as session:
            result = await session.execute(
                _bulk_delete(AssessmentCandidateModel).where(AssessmentCandidateModel.assessment_id == assessment_id)
            )
            return result.rowcount

    async def create_candidate_emails(self, rows: Sequence[AssessmentCandidateEmail]) -> int:
        async with self._session() as session:
            session.add_all([
                AssessmentCandidateEmailModel(
                    id=r.id,
                    assessment_id=r.assessment_id,
                    email=r.email,
                    status_code=r.status_code,
                    error_message=r.error_message,
                    created_at=r.created_at
                )
                for r in rows
            ])
            await session.flush()
        return len(rows)

    async def list_candidate_emails(self, assessment_id: str) -> List[AssessmentCandidateEmail]:
        async with self._session() as session:
            rows = await session.execute(
                select(AssessmentCandidateEmailModel)
                .where(AssessmentCandidateEmailModel.assessment_id == assessment_id)
                .order_by(AssessmentCandidateEmailModel.created_at)
            )
            return [_candidate_email(row) for row in rows.scalars()]

    async def delete_candidate_emails(self, assessment_id: str) -> int:
        async with self._session() as session:
            result = await session.execute(
                _bulk_delete(AssessmentCandidateEmailModel)
                .where(AssessmentCandidateEmailModel.assessment_id == assessment_id)
            )
            return result.rowcount

    # Results and attempts

    async def _load_result(self, session: AsyncSession, result_id: str) -> Optional[AssessmentResultModel]:
        rows = await session.execute(
            select(AssessmentResultModel)
            .options(*_RESULT_LOAD)
            .where(AssessmentResultModel.id == result_id)
            .execution_options(populate_existing=True)
        )
        return rows.scalars().first()

    async def create_result(self, result: AssessmentResult) -> AssessmentResult:
        async with self._session() as session:
            session.add(AssessmentResultModel(
                id=result.id,
                assessment_id=result.assessment_id,
                candidate_id=result.candidate_id,
                quiz_id=result.quiz_id,
                status=result.status.value,
                total_point=result.total_point,
                created_at=result.created_at,
                updated_at=result.updated_at
            ))
            await self._flush(
                session, "AssessmentResult", (result.assessment_id, result.candidate_id, result.quiz_id)
            )
            return _result(await self._load_result(session, result.id))

    async def get_result(self, result_id: str) -> Optional[AssessmentResult]:
        async with self._session() as session:
            row = await self._load_result(session, result_id)
            return _result(row) if row else None

    async def find_result(self, assessment_id: str, candidate_id: str, quiz_id: str) -> Optional[AssessmentResult]:
        async with self._session() as session:
            rows = await session.execute(
                select(AssessmentResultModel)
                .options(*_RESULT_LOAD)
                .where(and_(
                    AssessmentResultModel.assessment_id == assessment_id,
                    AssessmentResultModel.candidate_id == candidate_id,
                    AssessmentResultModel.quiz_id == quiz_id
                ))
                .execution_options(populate_existing=True)
            )
            row = rows.scalars().first()
            return _result(row) if row else None

    async def list_results(
        self,
        assessment_id: str,
        quiz_id: Optional[str] = None,
        candidate_id: Optional[str] = None,
        status: Optional[ResultStatus] = None
    ) -> List[AssessmentResult]:
        query = (
            select(AssessmentResultModel)
            .options(*_RESULT_LOAD)
            .where(AssessmentResultModel.assessment_id == assessment_id)
        )
        if quiz_id is not None:
            query = query.where(AssessmentResultModel.quiz_id == quiz_id)
        if candidate_id is not None:
            query = query.where(AssessmentResultModel.candidate_id == candidate_id)
        if status is not None:
            query = query.where(AssessmentResultModel.status == status.value)

        async with self._session() as session:
            rows = await session.execute(
                query.order_by(AssessmentResultModel.created_at).execution_options(populate_existing=True)
            )
            return [_result(row) for row in rows.scalars()]

    async def update_result(self, result: AssessmentResult) -> AssessmentResult:
        async with self._session() as session:
            row = await session.get(AssessmentResultModel, result.id)
            if row is None:
                raise NotFoundError("AssessmentResult", result.id)
            row.update({
                "status": result.status.value,
                "total_point": result.total_point,
                "updated_at": utcnow(),
            })
            await session.flush()
            return _result(await self._load_result(session, result.id))

    async def delete_result(self, result_id: str) -> Optional[AssessmentResult]:
        async with self._session() as session:
            row = await self._load_result(session, result_id)
            if row is None:
                return None
            deleted = _result(row)
            await session.execute(_bulk_delete(AssessmentResultModel).where(AssessmentResultModel.id == result_id))
            return deleted

    async def delete_results(self, assessment_id: str) -> int:
        async with self._session() as session:
            result = await session.execute(
                _bulk_delete(AssessmentResultModel).where(AssessmentResultModel.assessment_id == assessment_id)
            )
            return result.rowcount

    async def create_quiz_submission(self, slot: AssessmentQuizSubmission) -> AssessmentQuizSubmission:
        async with self._session() as session:
            session.add(AssessmentQuizSubmissionModel(
                id=slot.id,
                assessment_result_id=slot.assessment_result_id,
                sequence=slot.sequence,
                submission_id=slot.submission_id,
                created_at=slot.created_at
            ))
            await session.flush()
            return await self._load_slot(session, slot.id)

    async def _load_slot(self, session: AsyncSession, slot_id: str) -> Optional[AssessmentQuizSubmission]:
        rows = await session.execute(
            select(AssessmentQuizSubmissionModel)
            .options(selectinload(AssessmentQuizSubmissionModel.submission))
            .where(AssessmentQuizSubmissionModel.id == slot_id)
            .execution_options(populate_existing=True)
        )
        row = rows.scalars().first()
        return _slot(row) if row else None

    async def get_quiz_submission(self, slot_id: str) -> Optional[AssessmentQuizSubmission]:
        async with self._session() as session:
            return await self._load_slot(session, slot_id)

    async def update_quiz_submission(self, slot: AssessmentQuizSubmission) -> AssessmentQuizSubmission:
        async with self._session() as session:
            row = await session.get(AssessmentQuizSubmissionModel, slot.id)
            if row is None:
                raise NotFoundError("AssessmentQuizSubmission", slot.id)
            row.update({"submission_id": slot.submission_id, "sequence": slot.sequence})
            await session.flush()
            return await self._load_slot(session, slot.id)

    async def delete_quiz_submissions(self, slot_ids: Iterable[str]) -> int:
        slot_ids = list(slot_ids)
        if not slot_ids:
            return 0
        async with self._session() as session:
            result = await session.execute(
                _bulk_delete(AssessmentQuizSubmissionModel).where(AssessmentQuizSubmissionModel.id.in_(slot_ids))
            )
            return result.rowcount

    async def delete_result_quiz_submissions(self, result_ids: Iterable[str]) -> int:
        result_ids = list(result_ids)
        if not result_ids:
            return 0
        async with self._session() as session:
            result = await session.execute(
                _bulk_delete(AssessmentQuizSubmissionModel)
                .where(AssessmentQuizSubmissionModel.assessment_result_id.in_(result_ids))
            )
            return result.rowcount

    # Submissions and points

    async def create_submission(self, submission: Submission) -> Submission:
        async with self._session() as session:
            session.add(SubmissionModel(
                id=submission.id,
                user_id=submission.user_id,
                quiz_id=submission.quiz_id,
                code=submission.code,
                created_at=submission.created_at
            ))
            await session.flush()
        return submission

    async def create_submission_points(self, points: Sequence[SubmissionPoint]) -> int:
        async with self._session() as session:
            session.add_all([
                SubmissionPointModel(
                    id=p.id,
                    submission_id=p.submission_id,
                    user_id=p.user_id,
                    assessment_point_id=p.assessment_point_id,
                    point=p.point
                )
                for p in points
            ])
            await session.flush()
        return len(points)

    async def get_quiz_point(self, user_id: str, quiz_id: str) -> Optional[QuizPointRecord]:
        async with self._session() as session:
            rows = await session.execute(
                select(QuizPointCollectionModel).where(and_(
                    QuizPointCollectionModel.user_id == user_id,
                    QuizPointCollectionModel.quiz_id == quiz_id
                ))
            )
            row = rows.scalars().first()
            return _quiz_point(row) if row else None

    async def save_quiz_point(self, record: QuizPointRecord) -> QuizPointRecord:
        async with self._session() as session:
            rows = await session.execute(
                select(QuizPointCollectionModel).where(and_(
                    QuizPointCollectionModel.user_id == record.user_id,
                    QuizPointCollectionModel.quiz_id == record.quiz_id
                ))
            )
            row = rows.scalars().first()
            if row is None:
                row = QuizPointCollectionModel(
                    id=record.id, user_id=record.user_id, quiz_id=record.quiz_id, point=record.point
                )
                session.add(row)
            else:
                row.point = record.point
            row.updated_at = utcnow()
            await self._flush(session, "QuizPoint", (record.user_id, record.quiz_id))
            return _quiz_point(row)

    async def count_quiz_points(
        self,
        quiz_id: str,
        exclude_user_id: Optional[str] = None,
        below: Optional[float] = None
    ) -> int:
        query = select(func.count(QuizPointCollectionModel.id)).where(QuizPointCollectionModel.quiz_id == quiz_id)
        if exclude_user_id is not None:
            query = query.where(QuizPointCollectionModel.user_id != exclude_user_id)
        if below is not None:
            query = query.where(QuizPointCollectionModel.point < below)
        async with self._session() as session:
            return (await session.execute(query)).scalar_one()

    # Activity log

    async def create_activity(self, activity: CandidateActivity) -> CandidateActivity:
        async with self._session() as session:
            session.add(CandidateActivityLogModel(
                id=activity.id,
                user_id=activity.user_id,
                assessment_id=activity.assessment_id,
                action=activity.action.value,
                created_at=activity.created_at
            ))
            await session.flush()
        return activity

    async def list_activities(self, assessment_id: str) -> List[CandidateActivity]:
        async with self._session() as session:
            rows = await session.execute(
                select(CandidateActivityLogModel)
                .where(CandidateActivityLogModel.assessment_id == assessment_id)
                .order_by(CandidateActivityLogModel.created_at)
            )
            return [_activity(row) for row in rows.scalars()]
