"""
Exam, Question and Option models - exam definitions delivered to students
"""
from sqlalchemy import Column, Integer, String, Text, Boolean, TIMESTAMP, ForeignKey, text
from sqlalchemy.orm import relationship
from app.database import Base


class Exam(Base):
    """
    Exams table - timed evaluations assigned to a course
    """
    __tablename__ = "exams"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    course_id = Column(Integer, index=True)
    subject_name = Column(String(120))
    teacher_name = Column(String(120))
    duration_minutes = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(TIMESTAMP, server_default=text("CURRENT_TIMESTAMP"))

    questions = relationship(
        "Question",
        back_populates="exam",
        order_by="Question.position",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<Exam(id={self.id}, title={self.title}, duration={self.duration_minutes})>"


class Question(Base):
    """
    Questions table - one multiple choice prompt of an exam
    """
    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    exam_id = Column(Integer, ForeignKey("exams.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    prompt = Column(Text)
    image_url = Column(String(500))

    exam = relationship("Exam", back_populates="questions")
    options = relationship(
        "Option",
        back_populates="question",
        order_by="Option.position",
        cascade="all, delete-orphan",
    )

    @property
    def correct_option_id(self):
        for option in self.options:
            if option.is_correct:
                return option.id
        return None

    def __repr__(self):
        return f"<Question(id={self.id}, exam_id={self.exam_id})>"


class Option(Base):
    """
    Options table - answer choices; is_correct never leaves the server
    """
    __tablename__ = "options"

    id = Column(Integer, primary_key=True, autoincrement=True)
    question_id = Column(Integer, ForeignKey("questions.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    label = Column(Text, nullable=False)
    is_correct = Column(Boolean, nullable=False, default=False)

    question = relationship("Question", back_populates="options")

    def __repr__(self):
        return f"<Option(id={self.id}, question_id={self.question_id})>"
