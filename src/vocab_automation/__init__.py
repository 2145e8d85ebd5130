"""
Vocabulary list automation.

Photograph a vocabulary list, let a vision model turn it into German/English
word pairs, organize the saved lists into books and print them as test sheets
with a grading scale.
"""

__all__ = [
    "config",
    "errors",
    "logging",
    "paths",
]
