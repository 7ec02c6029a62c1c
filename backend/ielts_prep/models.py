from __future__ import annotations
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer, Float, Text, ForeignKey, Index
from sqlalchemy.orm import relationship
from .db import Base


SKILLS = ("reading", "listening", "writing", "speaking")
# Skills whose questions are written in bracket-tag markup and marked against a key
OBJECTIVE_SKILLS = ("reading", "listening")

FEEDBACK_PENDING = "pending"
FEEDBACK_READY = "ready"
FEEDBACK_FAILED = "failed"


class Exam(Base):
	__tablename__ = "exams"
	id = Column(Integer, primary_key=True, autoincrement=True)
	name = Column(String(256), nullable=False)
	exam_type = Column(String(64), nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	sections = relationship(
		"ExamSection",
		back_populates="exam",
		cascade="all, delete-orphan",
		order_by=lambda: [ExamSection.display_order, ExamSection.id],
	)


class ExamSection(Base):
	__tablename__ = "exam_sections"
	# The section id doubles as the SkillId clients use to group answers
	id = Column(Integer, primary_key=True, autoincrement=True)
	exam_id = Column(Integer, ForeignKey("exams.id", ondelete="CASCADE"), nullable=False, index=True)
	skill = Column(String(16), nullable=False)
	display_order = Column(Integer, default=1, nullable=False)
	# Passage markdown (reading), transcript/notes (listening) or task prompt (writing/speaking)
	content = Column(Text, nullable=True)
	# Bracket-tag question markup for reading/listening, free text otherwise
	question_markup = Column(Text, nullable=True)
	media_url = Column(String(1024), nullable=True)
	answer_key = Column(Text, nullable=True)  # JSON object: "{skill}_q{n}" -> str | [str]
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	exam = relationship("Exam", back_populates="sections")


class ExamAttempt(Base):
	__tablename__ = "exam_attempts"
	id = Column(Integer, primary_key=True, autoincrement=True)
	exam_id = Column(Integer, ForeignKey("exams.id", ondelete="CASCADE"), nullable=False, index=True)
	username = Column(String(128), nullable=False, index=True)
	skill = Column(String(16), nullable=False)
	answers_json = Column(Text, nullable=False)  # normalized answer groups
	correct_marks = Column(Integer, default=0, nullable=False)
	total_marks = Column(Integer, default=0, nullable=False)
	started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	submitted_at = Column(DateTime, default=datetime.utcnow, nullable=False)

	exam = relationship("Exam")


class AiFeedback(Base):
	__tablename__ = "ai_feedback"
	id = Column(Integer, primary_key=True, autoincrement=True)
	exam_id = Column(Integer, ForeignKey("exams.id", ondelete="CASCADE"), nullable=False)
	section_id = Column(Integer, ForeignKey("exam_sections.id", ondelete="CASCADE"), nullable=False)
	username = Column(String(128), nullable=False)
	kind = Column(String(16), nullable=False)  # writing | speaking
	display_order = Column(Integer, default=1, nullable=False)
	answer_text = Column(Text, nullable=False)  # essay or speaking transcript
	status = Column(String(16), default=FEEDBACK_PENDING, nullable=False)
	feedback_json = Column(Text, nullable=True)
	overall = Column(Float, nullable=True)
	error = Column(Text, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	__table_args__ = (Index("ix_ai_feedback_lookup", "kind", "exam_id", "username"),)

	section = relationship("ExamSection")


class Word(Base):
	__tablename__ = "words"
	id = Column(Integer, primary_key=True, autoincrement=True)
	# Terms are unique ignoring case; lookups compare lower(term)
	term = Column(String(128), nullable=False, unique=True, index=True)
	meaning = Column(Text, nullable=True)
	example = Column(Text, nullable=True)
	audio = Column(String(1024), nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
