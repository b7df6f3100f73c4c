"""
Lead Scoring Module for the guided intake CRM.

Maps the fields collected by a guided chat to a lead priority tier,
a qualification score and structured lead notes.
"""

from .scoring_model import LeadScorer, LeadScore, LeadPriority, QUALIFICATION_SCORES, build_notes

__all__ = [
    "LeadScorer",
    "LeadScore",
    "LeadPriority",
    "QUALIFICATION_SCORES",
    "build_notes",
]
