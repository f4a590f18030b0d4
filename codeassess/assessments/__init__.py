"""
Assessments Package

Scoring pipeline and submission lifecycle of coding assessments.
"""

from codeassess.assessments.service import AssessmentService
from codeassess.assessments.submissions import SubmissionService
from codeassess.assessments.repositories import AssessmentStore
from codeassess.assessments.memory_repository import MemoryAssessmentStore

__all__ = [
    'AssessmentService',
    'SubmissionService',
    'AssessmentStore',
    'MemoryAssessmentStore',
]
