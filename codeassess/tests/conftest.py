"""Shared fixtures for the assessment tests."""

from dataclasses import dataclass
from typing import Dict, List, Optional

import pytest
import pytest_asyncio

from codeassess.common.exceptions import NotificationError
from codeassess.config import Settings
from codeassess.assessments.memory_repository import MemoryAssessmentStore
from codeassess.assessments.models import (
    Assessment,
    AssessmentPoint,
    CodeLanguage,
    DifficultyLevel,
    Quiz,
    User,
)
from codeassess.assessments.notifications import DeliveryResult, InvitationMailer
from codeassess.assessments.service import AssessmentService

EASY_POINT = 1000
SPEED_POINT = 500
EASY_QUIZ_POINT = 1650.0


class RecordingMailer(InvitationMailer):
    """Mailer double that records invitations and fails for chosen recipients."""

    def __init__(self, failing: Optional[Dict[str, str]] = None):
        self.sent = []
        self.failing = dict(failing or {})

    async def send_invitation(self, recipient, locale, content):
        self.sent.append((recipient, locale, content))
        if recipient in self.failing:
            raise NotificationError(self.failing[recipient], recipient, 550)
        return DeliveryResult(accepted=[recipient])


@dataclass
class Platform:
    owner: User
    candidates: List[User]
    quizzes: List[Quiz]
    points: Dict[str, AssessmentPoint]


async def seed_platform(store) -> Platform:
    """Owner, two candidates, two easy quizzes and the point categories."""
    owner = User(email="owner@example.com", name="Owner")
    candidates = [User(email="user1@example.com"), User(email="user2@example.com", name="Second")]
    await store.create_users([owner] + candidates)
    await store.save_difficulty_level(DifficultyLevel(id=1, name="easy"))
    await store.save_code_language(CodeLanguage(id=1, name="python"))

    quizzes = []
    for title in ("Two sum", "Reverse list"):
        quizzes.append(await store.save_quiz(Quiz(
            title=title,
            instruction="Just do it",
            user_id=owner.id,
            difficulty_level_id=1,
            code_language_id=1
        )))

    points = {}
    for name, value in (("easyQuizCompletionPoint", EASY_POINT), ("speedPoint", SPEED_POINT)):
        points[name] = await store.save_assessment_point(AssessmentPoint(name=name, point=value))

    return Platform(owner=owner, candidates=candidates, quizzes=quizzes, points=points)


@pytest.fixture
def settings():
    return Settings(APP_URL="https://assess.example.com", COMPANY_NAME="Acme")


@pytest.fixture
def store():
    return MemoryAssessmentStore()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def service(store, mailer, settings):
    return AssessmentService(store, mailer=mailer, settings=settings)


@pytest_asyncio.fixture
async def platform(store):
    return await seed_platform(store)


@pytest_asyncio.fixture
async def assessment(service, platform) -> Assessment:
    return await service.create_assessment({
        "user_id": platform.owner.id,
        "title": "Backend hiring",
        "description": "Two warm-up problems",
        "quiz_ids": [q.id for q in platform.quizzes],
        "start_at": "2026-01-01T09:00:00",
        "end_at": "2026-01-08T09:00:00",
    })


@pytest_asyncio.fixture
async def accepted(service, assessment, platform) -> Assessment:
    """The assessment with both candidates accepted through the shared link."""
    for candidate in platform.candidates:
        await service.accept_candidate({"token": "shared", "assessment_id": assessment.id, "user_id": candidate.id})
    return assessment
