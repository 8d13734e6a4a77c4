"""
Database models package
"""
from app.models.exam import Exam, Question, Option
from app.models.attempt import ExamAttempt

__all__ = ["Exam", "Question", "Option", "ExamAttempt"]
