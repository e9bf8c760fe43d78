"""
Rating combination for InstructorLink.
"""
