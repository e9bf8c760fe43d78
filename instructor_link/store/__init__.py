"""
Link storage for InstructorLink.
"""
