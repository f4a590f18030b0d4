import asyncio
import json
import logging
import os
import tempfile
import unittest

from codeassess.common.exceptions import InvalidStatusTransition
from codeassess.common.logger import JsonFormatter, configure_logger, log_execution_time
from codeassess.config import Settings
from codeassess.common.serialization import to_json
from codeassess.assessments.models import (
    AssessmentCandidate,
    AssessmentQuizSubmission,
    AssessmentResult,
    CandidateStatus,
    DifficultyLevel,
    Quiz,
    QuizResultSummary,
    ResultStatus,
    Submission,
    User,
    complete_result,
    start_result,
)


def make_result(*codes):
    result = AssessmentResult(assessment_id="a", candidate_id="c", quiz_id="q")
    for sequence, code in enumerate(codes):
        submission = Submission(user_id="c", quiz_id="q", code=code)
        result.assessment_quiz_submissions.append(AssessmentQuizSubmission(
            assessment_result_id=result.id,
            sequence=sequence,
            submission_id=submission.id,
            submission=submission
        ))
    return result


class TestStatusTransitions(unittest.TestCase):
    """Test the monotonic status machines."""

    def test_result_moves_forward(self):
        self.assertIs(ResultStatus.PENDING.advance(ResultStatus.STARTED), ResultStatus.STARTED)
        self.assertIs(ResultStatus.STARTED.advance(ResultStatus.COMPLETED), ResultStatus.COMPLETED)

    def test_result_never_moves_back(self):
        with self.assertRaises(InvalidStatusTransition) as ctx:
            ResultStatus.COMPLETED.advance(ResultStatus.STARTED)
        self.assertEqual(str(ctx.exception), "ResultStatus cannot move from COMPLETED to STARTED")

    def test_same_state_is_allowed(self):
        self.assertIs(CandidateStatus.ACCEPTED.advance(CandidateStatus.ACCEPTED), CandidateStatus.ACCEPTED)

    def test_candidate_never_moves_back(self):
        with self.assertRaises(InvalidStatusTransition):
            CandidateStatus.COMPLETED.advance(CandidateStatus.PENDING)

    def test_start_keeps_completed_result(self):
        self.assertIs(start_result(ResultStatus.PENDING), ResultStatus.STARTED)
        self.assertIs(start_result(ResultStatus.COMPLETED), ResultStatus.COMPLETED)

    def test_complete_is_idempotent(self):
        self.assertIs(complete_result(ResultStatus.STARTED), ResultStatus.COMPLETED)
        self.assertIs(complete_result(ResultStatus.COMPLETED), ResultStatus.COMPLETED)

    def test_status_parsed_from_value(self):
        candidate = AssessmentCandidate(assessment_id="a", candidate_id="c", status="ACCEPTED")
        self.assertIs(candidate.status, CandidateStatus.ACCEPTED)


class TestEntities(unittest.TestCase):
    """Test entity helpers."""

    def test_display_name_falls_back_to_email_local_part(self):
        self.assertEqual(User(email="newguys@gmail.com").display_name, "newguys")
        self.assertEqual(User(email="a@b.c", name="Ann").display_name, "Ann")

    def test_negative_total_point_rejected(self):
        with self.assertRaises(ValueError):
            AssessmentResult(assessment_id="a", candidate_id="c", quiz_id="q", total_point=-1)

    def test_new_result_has_no_attempts(self):
        result = AssessmentResult(assessment_id="a", candidate_id="c", quiz_id="q")
        self.assertIs(result.status, ResultStatus.STARTED)
        self.assertEqual(result.total_point, 0)
        self.assertEqual(result.attempts, [])
        self.assertIsNone(result.latest_attempt)
        self.assertEqual(result.next_sequence(), 0)

    def test_open_slot_is_not_an_attempt(self):
        result = make_result("first")
        slot = AssessmentQuizSubmission(assessment_result_id=result.id, sequence=result.next_sequence())
        result.assessment_quiz_submissions.append(slot)
        self.assertEqual(len(result.attempts), 1)
        self.assertIs(result.open_slot(), slot)
        self.assertEqual(result.next_sequence(), 2)

    def test_latest_attempt_follows_sequence(self):
        result = make_result("first", "second")
        result.assessment_quiz_submissions.reverse()
        self.assertEqual(result.latest_attempt.submission.code, "second")

    def test_quiz_difficulty_name(self):
        quiz = Quiz(title="t", difficulty_level=DifficultyLevel(id=1, name="easy"))
        self.assertEqual(quiz.difficulty_name, "easy")
        self.assertIsNone(Quiz(title="t").difficulty_name)


class TestQuizResultSummary(unittest.TestCase):
    """Test the per-quiz bucket of the submissions summary."""

    def test_unopened_quiz_is_pending(self):
        summary = QuizResultSummary.from_result("q", None)
        self.assertIs(summary.status, ResultStatus.PENDING)
        self.assertEqual(summary.total_point, 0)
        self.assertEqual(summary.assessment_quiz_submissions, [])

    def test_keeps_only_latest_attempt(self):
        result = make_result("first", "second")
        result.status = ResultStatus.COMPLETED
        result.total_point = 10
        summary = QuizResultSummary.from_result("q", result)
        self.assertEqual(len(summary.assessment_quiz_submissions), 1)
        self.assertEqual(summary.assessment_quiz_submissions[0].submission.code, "second")
        self.assertEqual(summary.result_id, result.id)

    def test_serializes_to_plain_json(self):
        summary = QuizResultSummary.from_result("q", make_result("print(1)"))
        data = json.loads(to_json(summary))
        self.assertEqual(data["status"], "STARTED")
        self.assertEqual(data["assessment_quiz_submissions"][0]["submission"]["code"], "print(1)")


class TestJsonFormatter(unittest.TestCase):
    """Test structured log output."""

    def test_merges_extra_data(self):
        record = logging.LogRecord("codeassess", logging.INFO, __file__, 1, "hello %s", ("there",), None)
        record.data = {"assessment_id": "a1"}
        output = json.loads(JsonFormatter().format(record))
        self.assertEqual(output["message"], "hello there")
        self.assertEqual(output["assessment_id"], "a1")
        self.assertEqual(output["level"], "INFO")

    def test_data_cannot_replace_base_fields(self):
        record = logging.LogRecord("codeassess", logging.INFO, __file__, 1, "hello", (), None)
        record.data = {"message": "forged", "quiz_id": "q1"}
        output = json.loads(JsonFormatter().format(record))
        self.assertEqual(output["message"], "hello")
        self.assertEqual(output["quiz_id"], "q1")


class TestConfigureLogger(unittest.TestCase):
    """Test logger setup from settings."""

    def test_json_file_logging(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "logs", "app.log")
            logger = configure_logger(Settings(LOG_JSON=True, LOG_FILE=path, LOG_LEVEL="debug"), "codeassess.test")
            try:
                logger.info("hello", extra={"data": {"assessment_id": "a1"}})
                self.assertEqual(logger.level, logging.DEBUG)
                self.assertEqual(len(logger.handlers), 2)
                for handler in logger.handlers:
                    handler.flush()
                with open(path) as f:
                    self.assertEqual(json.loads(f.readline())["assessment_id"], "a1")
            finally:
                for handler in logger.handlers:
                    handler.close()
                logger.handlers = []

    def test_reconfiguring_does_not_duplicate_handlers(self):
        logger = configure_logger(Settings(), "codeassess.test.twice")
        configure_logger(Settings(), "codeassess.test.twice")
        self.assertEqual(len(logger.handlers), 1)


class TestLogExecutionTime(unittest.TestCase):
    """Test the timing decorator."""

    def test_failures_are_reraised_and_logged(self):
        logger = logging.getLogger("codeassess.test.timing")

        @log_execution_time(logger)
        def explode():
            raise RuntimeError("boom")

        with self.assertLogs(logger, level="WARNING") as logs:
            with self.assertRaises(RuntimeError):
                explode()
        self.assertIn("RuntimeError: boom", logs.output[0])

    def test_async_result_is_returned(self):
        @log_execution_time()
        async def answer():
            return 42

        self.assertEqual(asyncio.run(answer()), 42)
        self.assertEqual(answer.__name__, "answer")
