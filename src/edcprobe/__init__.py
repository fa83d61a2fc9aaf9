"""
edcprobe: End-to-end harness for EDC template and patient-snapshot consistency.

Drives a live EDC backend through an ordered, resumable suite of steps and
verifies that every patient carries exactly one form snapshot per template
assigned to each of their visits.
"""

__version__ = "0.1.0"
