from __future__ import annotations
import json
import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import InvalidRequestError
from .marking.normalizer import format_mark_scheme
from .marking.schemas import MarkingResult, MarkScheme, Question
from .models import QuestionAttemptRecord, QuestionRecord

logger = logging.getLogger(__name__)

# Extra tries when a concurrent save takes the version number first
VERSION_RETRIES = 3


# -- questions ---------------------------------------------------------------

def question_from_record(row: QuestionRecord) -> Question:
	return Question(
		id=row.id,
		text=row.question_text,
		max_marks=row.max_marks,
		mark_scheme=MarkScheme.model_validate_json(row.mark_scheme_json),
		paper_id=row.paper_id,
		source=row.source,
	)


def question_to_dict(row: QuestionRecord) -> Dict[str, Any]:
	return {
		"id": row.id,
		"questionText": row.question_text,
		"maxMarks": row.max_marks,
		"markScheme": row.mark_scheme,
		"type": row.question_type,
		"subject": row.subject,
		"paperId": row.paper_id,
		"source": row.source,
		"supersedesId": row.supersedes_id,
		"createdAt": row.created_at.isoformat() if row.created_at else None,
	}


def create_question(
	db: Session,
	*,
	username: Optional[str],
	text: str,
	max_marks: int,
	scheme: MarkScheme,
	question_type: str = "text",
	subject: Optional[str] = None,
	paper_id: Optional[str] = None,
	source: str = "manual",
	supersedes_id: Optional[int] = None,
) -> QuestionRecord:
	row = QuestionRecord(
		username=username,
		question_text=text.strip(),
		max_marks=max_marks,
		mark_scheme=format_mark_scheme(scheme, max_marks),
		mark_scheme_json=scheme.model_dump_json(),
		question_type=question_type,
		subject=subject,
		paper_id=paper_id,
		source=source,
		supersedes_id=supersedes_id,
	)
	db.add(row)
	db.commit()
	db.refresh(row)
	return row


def get_question(db: Session, question_id: int) -> Optional[QuestionRecord]:
	return db.get(QuestionRecord, question_id)


def list_questions(
	db: Session,
	*,
	subject: Optional[str] = None,
	question_type: Optional[str] = None,
	paper_id: Optional[str] = None,
	limit: int = 100,
) -> List[QuestionRecord]:
	query = db.query(QuestionRecord)
	if subject:
		query = query.filter(QuestionRecord.subject == subject)
	if question_type:
		query = query.filter(QuestionRecord.question_type == question_type)
	if paper_id:
		query = query.filter(QuestionRecord.paper_id == paper_id)
	return query.order_by(QuestionRecord.id.desc()).limit(limit).all()


# -- attempts ----------------------------------------------------------------

def attempt_to_dict(row: QuestionAttemptRecord, *, include_result: bool = True) -> Dict[str, Any]:
	data: Dict[str, Any] = {
		"id": row.id,
		"questionId": row.question_id,
		"studentAnswer": row.student_answer,
		"score": row.score,
		"maxScore": row.max_score,
		"versionNumber": row.version_number,
		"isSaved": bool(row.is_saved),
		"name": row.name,
		"createdAt": row.created_at.isoformat() if row.created_at else None,
	}
	if include_result:
		data["result"] = json.loads(row.result_json)
	return data


def _next_version(db: Session, username: str, question_id: int) -> int:
	latest = (
		db.query(func.max(QuestionAttemptRecord.version_number))
		.filter(QuestionAttemptRecord.username == username, QuestionAttemptRecord.question_id == question_id)
		.scalar()
	)
	return (latest or 0) + 1


def save_attempt(db: Session, username: str, question_id: int, student_answer: str, result: MarkingResult) -> QuestionAttemptRecord:
	"""Store a marked answer as the next version of the user's attempts at a question.

	Two markings of the same question can finish together; the unique version
	index rejects the loser, which re-reads the latest version and tries again.
	"""
	result_json = json.dumps(result.to_response())
	for retries_left in range(VERSION_RETRIES, -1, -1):
		version = _next_version(db, username, question_id)
		row = QuestionAttemptRecord(
			username=username,
			question_id=question_id,
			student_answer=student_answer,
			result_json=result_json,
			score=result.score,
			max_score=result.max_score,
			version_number=version,
		)
		db.add(row)
		try:
			db.commit()
		except IntegrityError:
			db.rollback()
			if not retries_left:
				raise
			logger.info("Version %d of question %s for %s was taken; retrying", version, question_id, username)
			continue
		db.refresh(row)
		logger.info("Saved attempt %s (v%d) for %s on question %s", row.id, row.version_number, username, question_id)
		return row


def load_history(db: Session, username: str, question_id: Optional[int] = None) -> List[QuestionAttemptRecord]:
	query = db.query(QuestionAttemptRecord).filter(QuestionAttemptRecord.username == username)
	if question_id is not None:
		query = query.filter(QuestionAttemptRecord.question_id == question_id)
	return query.order_by(QuestionAttemptRecord.created_at.desc(), QuestionAttemptRecord.id.desc()).all()


def get_attempt(db: Session, username: str, attempt_id: int) -> Optional[QuestionAttemptRecord]:
	row = db.get(QuestionAttemptRecord, attempt_id)
	if row is None or row.username != username:
		return None
	return row


def set_saved(db: Session, row: QuestionAttemptRecord, is_saved: bool, name: Optional[str] = None) -> QuestionAttemptRecord:
	# The save flag and its label are the only mutable fields of an attempt
	row.is_saved = bool(is_saved)
	if name is not None:
		row.name = name.strip() or None
	db.add(row)
	db.commit()
	db.refresh(row)
	return row


def attempt_status(db: Session, username: str, question_ids: Iterable[int]) -> Dict[int, Dict[str, Any]]:
	ids = list(dict.fromkeys(int(q) for q in question_ids))
	if not ids:
		raise InvalidRequestError("questionIds must not be empty")
	status: Dict[int, Dict[str, Any]] = {
		qid: {"hasAttempted": False, "attemptCount": 0, "latestAttempt": None} for qid in ids
	}
	rows = (
		db.query(QuestionAttemptRecord)
		.filter(QuestionAttemptRecord.username == username, QuestionAttemptRecord.question_id.in_(ids))
		.order_by(QuestionAttemptRecord.version_number.desc())
		.all()
	)
	for row in rows:
		entry = status[row.question_id]
		entry["hasAttempted"] = True
		entry["attemptCount"] += 1
		if entry["latestAttempt"] is None:
			entry["latestAttempt"] = {
				"id": row.id,
				"score": row.score,
				"maxScore": row.max_score,
				"versionNumber": row.version_number,
				"createdAt": row.created_at.isoformat() if row.created_at else None,
			}
	return status
