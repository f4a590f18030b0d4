"""
CodeAssess Backend

Scoring and lifecycle core of a coding-assessment platform:
1. Assessment authoring with timed quiz bundles
2. Candidate invitations and acceptance
3. Code submission lifecycle per candidate and quiz
4. Quiz points and comparative scoring
"""

__version__ = "0.1.0"
