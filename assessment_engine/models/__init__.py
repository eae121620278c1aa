"""
Database models package
"""
from assessment_engine.models.user import User, Role, Permission, UserStatus
from assessment_engine.models.academic import Course, Semester, CourseOffering, Enrollment
from assessment_engine.models.quiz import Quiz, Question, Option, QuizStatus, QuestionType, Difficulty
from assessment_engine.models.quiz_attempt import QuizAttempt, Answer, AttemptStatus
from assessment_engine.models.notification import Notification

__all__ = [
    "User", "Role", "Permission", "UserStatus",
    "Course", "Semester", "CourseOffering", "Enrollment",
    "Quiz", "Question", "Option", "QuizStatus", "QuestionType", "Difficulty",
    "QuizAttempt", "Answer", "AttemptStatus",
    "Notification",
]
