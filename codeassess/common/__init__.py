"""
Common Module

Shared infrastructure for the assessment backend: logging, exceptions,
input validation and serialization.
"""
