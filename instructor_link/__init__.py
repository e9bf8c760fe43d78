"""
InstructorLink - Instructor Identity Resolution and Composite Rating Engine

Links registrar instructors to their records on external rating providers
using weighted, explainable similarity signals, and derives one composite
rating per instructor from the linked records.
"""

__version__ = "1.0.0"
__author__ = "InstructorLink Team"
