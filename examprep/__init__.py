"""
ExamPrep Content and Grading Backend

This package provides the core of an IELTS / PTE exam-preparation
platform:

1. Composition of tests out of ordered sections and questions
2. The submission lifecycle from submit to grade, gated by role
3. Per-family score normalization and statistics
"""

__version__ = "0.1.0"
