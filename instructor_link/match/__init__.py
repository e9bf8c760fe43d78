"""
Matching engine for InstructorLink.

Signal scorers, the weighted composite aggregator and the confidence
classifier.
"""
