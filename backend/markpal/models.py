from __future__ import annotations
from datetime import datetime
from sqlalchemy import Boolean, Column, String, DateTime, Integer, Text, Index
from .db import Base


class AuthUser(Base):
	__tablename__ = "auth_users"
	# Primary key is username
	username = Column(String(128), primary_key=True, index=True)
	password_hash = Column(String(256), nullable=False)
	email = Column(String(256), nullable=True)
	# free | basic | pro | pro+
	tier = Column(String(16), default="free", nullable=False)
	questions_left = Column(Integer, default=5, nullable=False)
	questions_reset_date = Column(DateTime, nullable=True)
	billing_customer_id = Column(String(128), nullable=True, index=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class AuthSession(Base):
	__tablename__ = "auth_sessions"
	session_id = Column(String(64), primary_key=True)
	username = Column(String(128), nullable=False, index=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	last_activity_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class QuestionRecord(Base):
	__tablename__ = "questions"
	id = Column(Integer, primary_key=True, autoincrement=True)
	username = Column(String(128), nullable=True, index=True)
	question_text = Column(Text, nullable=False)
	max_marks = Column(Integer, nullable=False)
	# Canonical mark-scheme text plus its parsed form as a JSON string
	mark_scheme = Column(Text, nullable=False)
	mark_scheme_json = Column(Text, nullable=False)
	question_type = Column(String(32), default="text", nullable=False)
	subject = Column(String(64), nullable=True)
	paper_id = Column(String(128), nullable=True)
	source = Column(String(32), default="manual", nullable=False)
	# Questions are never edited in place; a revision points at the record it replaces
	supersedes_id = Column(Integer, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class QuestionAttemptRecord(Base):
	__tablename__ = "question_attempts"
	id = Column(Integer, primary_key=True, autoincrement=True)
	username = Column(String(128), nullable=False, index=True)
	# Weak reference: attempts outlive deleted questions
	question_id = Column(Integer, nullable=False, index=True)
	student_answer = Column(Text, nullable=False)
	result_json = Column(Text, nullable=False)
	score = Column(Integer, nullable=False)
	max_score = Column(Integer, nullable=False)
	version_number = Column(Integer, default=1, nullable=False)
	is_saved = Column(Boolean, default=False, nullable=False)
	name = Column(String(256), nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

	__table_args__ = (
		Index("ix_attempts_user_question", "username", "question_id"),
		# One row per version of a question for a user
		Index("uq_attempts_version", "username", "question_id", "version_number", unique=True),
	)
