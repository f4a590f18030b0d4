"""
Assessment Database Models

Relational twins of the domain entities in ``codeassess.assessments.models``.
Status enums are stored by value.
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from codeassess.database.base import ModelBase
from codeassess.assessments.models import new_id, utcnow

ID = String(36)


class UserModel(ModelBase):
    __tablename__ = "users"

    id = Column(ID, primary_key=True, default=new_id)
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(255), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class DifficultyLevelModel(ModelBase):
    __tablename__ = "difficulty_levels"

    id = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(String(64), nullable=False)


class CodeLanguageModel(ModelBase):
    __tablename__ = "code_languages"

    id = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(String(64), nullable=False)


class QuizModel(ModelBase):
    __tablename__ = "quizzes"

    id = Column(ID, primary_key=True, default=new_id)
    title = Column(String(255), nullable=False)
    instruction = Column(Text, nullable=True)
    user_id = Column(ID, ForeignKey("users.id"), nullable=True)
    difficulty_level_id = Column(Integer, ForeignKey("difficulty_levels.id"), nullable=True)
    code_language_id = Column(Integer, ForeignKey("code_languages.id"), nullable=True)

    difficulty_level = relationship(DifficultyLevelModel, lazy="selectin")


class AssessmentModel(ModelBase):
    __tablename__ = "assessments"

    id = Column(ID, primary_key=True, default=new_id)
    owner_id = Column(ID, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    start_at = Column(DateTime, nullable=True)
    end_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class AssessmentQuizModel(ModelBase):
    __tablename__ = "assessment_quizzes"

    assessment_id = Column(ID, ForeignKey("assessments.id"), primary_key=True)
    quiz_id = Column(ID, ForeignKey("quizzes.id"), primary_key=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    quiz = relationship(QuizModel, lazy="selectin")


class AssessmentCandidateModel(ModelBase):
    __tablename__ = "assessment_candidates"

    assessment_id = Column(ID, ForeignKey("assessments.id"), primary_key=True)
    candidate_id = Column(ID, ForeignKey("users.id"), primary_key=True)
    status = Column(String(16), nullable=False, default="PENDING")
    token = Column(String(64), nullable=True)
    accepted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    candidate = relationship(UserModel, lazy="selectin")


class AssessmentCandidateEmailModel(ModelBase):
    __tablename__ = "assessment_candidate_emails"

    id = Column(ID, primary_key=True, default=new_id)
    assessment_id = Column(ID, ForeignKey("assessments.id"), nullable=False, index=True)
    email = Column(String(255), nullable=False)
    status_code = Column(Integer, nullable=False)
    error_message = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, nullable=False, default=utcnow)


class SubmissionModel(ModelBase):
    __tablename__ = "submissions"

    id = Column(ID, primary_key=True, default=new_id)
    user_id = Column(ID, ForeignKey("users.id"), nullable=False, index=True)
    quiz_id = Column(ID, ForeignKey("quizzes.id"), nullable=False, index=True)
    code = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class AssessmentQuizSubmissionModel(ModelBase):
    __tablename__ = "assessment_quiz_submissions"

    id = Column(ID, primary_key=True, default=new_id)
    assessment_result_id = Column(ID, ForeignKey("assessment_results.id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False, default=0)
    submission_id = Column(ID, ForeignKey("submissions.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    submission = relationship(SubmissionModel, lazy="selectin")


class AssessmentResultModel(ModelBase):
    __tablename__ = "assessment_results"
    __table_args__ = (
        UniqueConstraint("assessment_id", "candidate_id", "quiz_id"),
        CheckConstraint("total_point >= 0", name="total_point_non_negative"),
    )

    id = Column(ID, primary_key=True, default=new_id)
    assessment_id = Column(ID, ForeignKey("assessments.id"), nullable=False, index=True)
    candidate_id = Column(ID, ForeignKey("users.id"), nullable=False)
    quiz_id = Column(ID, ForeignKey("quizzes.id"), nullable=False)
    status = Column(String(16), nullable=False, default="STARTED")
    total_point = Column(Float, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    assessment_quiz_submissions = relationship(
        AssessmentQuizSubmissionModel,
        order_by=AssessmentQuizSubmissionModel.sequence,
        lazy="selectin"
    )


class AssessmentPointModel(ModelBase):
    __tablename__ = "assessment_points"

    id = Column(ID, primary_key=True, default=new_id)
    name = Column(String(64), nullable=False, unique=True)
    point = Column(Float, nullable=False)


class QuizPointCollectionModel(ModelBase):
    __tablename__ = "quiz_point_collections"
    __table_args__ = (
        UniqueConstraint("user_id", "quiz_id"),
    )

    id = Column(ID, primary_key=True, default=new_id)
    user_id = Column(ID, ForeignKey("users.id"), nullable=False)
    quiz_id = Column(ID, ForeignKey("quizzes.id"), nullable=False, index=True)
    point = Column(Float, nullable=False)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class SubmissionPointModel(ModelBase):
    __tablename__ = "submission_points"

    id = Column(ID, primary_key=True, default=new_id)
    submission_id = Column(ID, ForeignKey("submissions.id"), nullable=False, index=True)
    user_id = Column(ID, ForeignKey("users.id"), nullable=False)
    assessment_point_id = Column(ID, ForeignKey("assessment_points.id"), nullable=False)
    point = Column(Float, nullable=False)


class CandidateActivityLogModel(ModelBase):
    """Audit rows outlive their assessment, so assessment_id carries no foreign key."""

    __tablename__ = "candidate_activity_logs"

    id = Column(ID, primary_key=True, default=new_id)
    user_id = Column(ID, ForeignKey("users.id"), nullable=False)
    assessment_id = Column(ID, nullable=False, index=True)
    action = Column(String(16), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
