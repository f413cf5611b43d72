from __future__ import annotations
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, Integer, Text, JSON, Index
from .db import Base


def utcnow() -> datetime:
	# Naive UTC, matching what SQLite hands back
	return datetime.now(timezone.utc).replace(tzinfo=None)


class AuthUser(Base):
	__tablename__ = "auth_users"
	username = Column(String(128), primary_key=True, index=True)
	password_hash = Column(String(256), nullable=False)
	created_at = Column(DateTime, default=utcnow, nullable=False)
	updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class AuthSession(Base):
	__tablename__ = "auth_sessions"
	session_id = Column(String(64), primary_key=True)
	username = Column(String(128), nullable=False, index=True)
	created_at = Column(DateTime, default=utcnow, nullable=False)
	last_activity_at = Column(DateTime, default=utcnow, nullable=False)


class Learner(Base):
	__tablename__ = "learners"
	user_id = Column(String(128), primary_key=True)
	display_name = Column(String(256), nullable=True)
	interests = Column(JSON, default=list, nullable=False)
	created_at = Column(DateTime, default=utcnow, nullable=False)


class TemplateQuestion(Base):
	__tablename__ = "template_questions"
	id = Column(String(256), primary_key=True)
	# Classification
	interest = Column(String(128), nullable=False)
	level = Column(String(8), nullable=False)
	game_mode = Column(String(64), nullable=False)
	difficulty = Column(String(16), nullable=False)
	# Batch linkage
	batch_id = Column(String(256), nullable=False, index=True)
	batch_number = Column(Integer, nullable=False)
	question_index = Column(Integer, nullable=False)
	# Content
	passage = Column(Text, nullable=True)
	question = Column(Text, nullable=False)
	options = Column(JSON, nullable=False)
	correct_index = Column(Integer, nullable=False)
	explanation = Column(Text, nullable=False)
	clue = Column(Text, nullable=False)
	# pending | approved | rejected | needs_revision
	status = Column(String(32), default="pending", nullable=False)
	created_at = Column(DateTime, default=utcnow, nullable=False)
	updated_at = Column(DateTime, nullable=True)
	approved_at = Column(DateTime, nullable=True)
	approved_by = Column(String(128), nullable=True)
	rejected_at = Column(DateTime, nullable=True)
	rejection_reason = Column(Text, nullable=True)

	__table_args__ = (
		Index("ix_template_questions_pool_status", "interest", "level", "game_mode", "status"),
	)

	def content(self) -> dict:
		data = {
			"question": self.question,
			"options": list(self.options or []),
			"correctIndex": self.correct_index,
			"explanation": self.explanation,
			"clue": self.clue,
		}
		if self.passage:
			data["passage"] = self.passage
		return data


class TemplateBatch(Base):
	__tablename__ = "template_batches"
	id = Column(String(256), primary_key=True)
	interest = Column(String(128), nullable=False)
	level = Column(String(8), nullable=False)
	game_mode = Column(String(64), nullable=False)
	difficulty = Column(String(16), nullable=False)
	batch_number = Column(Integer, nullable=False)
	# approved + pending + rejected == total at all times
	total_questions = Column(Integer, nullable=False)
	approved_count = Column(Integer, default=0, nullable=False)
	pending_count = Column(Integer, default=0, nullable=False)
	rejected_count = Column(Integer, default=0, nullable=False)
	requested_questions = Column(Integer, nullable=True)
	status = Column(String(32), default="all_pending", nullable=False)
	created_at = Column(DateTime, default=utcnow, nullable=False)
	last_reviewed_at = Column(DateTime, nullable=True)
	generated_by = Column(String(128), nullable=True)

	__table_args__ = (
		Index("ix_template_batches_pool", "interest", "level", "game_mode"),
	)


class ApprovedQuestionPool(Base):
	__tablename__ = "approved_question_pools"
	id = Column(String(256), primary_key=True)
	interest = Column(String(128), nullable=False)
	level = Column(String(8), nullable=False)
	game_mode = Column(String(64), nullable=False)
	difficulty = Column(String(16), nullable=False)
	total_questions = Column(Integer, default=0, nullable=False)
	source_batches = Column(JSON, default=list, nullable=False)
	last_updated = Column(DateTime, default=utcnow, nullable=False)


class GenerationRun(Base):
	__tablename__ = "generation_runs"
	# One run per learner, reset on every trigger
	user_id = Column(String(128), primary_key=True)
	interests = Column(JSON, default=list, nullable=False)
	# pending | in_progress | completed | failed
	status = Column(String(32), default="pending", nullable=False)
	progress = Column(Integer, default=0, nullable=False)
	total = Column(Integer, default=0, nullable=False)
	current_batch = Column(Integer, default=0, nullable=False)
	error = Column(Text, nullable=True)
	created_at = Column(DateTime, default=utcnow, nullable=False)
	updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
	completed_at = Column(DateTime, nullable=True)


class QuizSet(Base):
	__tablename__ = "quiz_sets"
	id = Column(String(256), primary_key=True)
	user_id = Column(String(128), nullable=False, index=True)
	level = Column(String(8), nullable=False)
	game_mode = Column(String(64), nullable=False)
	difficulty = Column(String(16), nullable=False)
	interests = Column(JSON, default=list, nullable=False)
	questions = Column(JSON, default=list, nullable=False)
	# pending | approved | regenerating
	status = Column(String(32), default="pending", nullable=False)
	created_at = Column(DateTime, default=utcnow, nullable=False)
	updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
	approved_at = Column(DateTime, nullable=True)
	regeneration_requested_at = Column(DateTime, nullable=True)
	regenerated_at = Column(DateTime, nullable=True)
	regeneration_error = Column(Text, nullable=True)
