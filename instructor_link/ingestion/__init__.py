"""
Data ingestion module for InstructorLink.

Record types for registrar instructors and provider ratings, plus file
loaders with schema validation.
"""
