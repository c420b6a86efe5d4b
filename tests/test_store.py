"""
Test: attempt versions stay unique per user and question.
"""
import pytest
from sqlalchemy.exc import IntegrityError

from markpal import store
from markpal.marking.schemas import MarkingResult
from markpal.models import QuestionAttemptRecord


def result(score=1):
	return MarkingResult(score=score, max_score=2, feedback="Good work.")


class TestAttemptVersions:
	def test_versions_count_up_per_user_and_question(self, db):
		assert store.save_attempt(db, "student", 1, "first", result()).version_number == 1
		assert store.save_attempt(db, "student", 1, "second", result()).version_number == 2
		assert store.save_attempt(db, "student", 2, "other question", result()).version_number == 1
		assert store.save_attempt(db, "someone-else", 1, "other user", result()).version_number == 1

	def test_duplicate_version_is_rejected(self, db):
		for answer in ("first", "second"):
			db.add(
				QuestionAttemptRecord(
					username="student",
					question_id=1,
					student_answer=answer,
					result_json="{}",
					score=0,
					max_score=2,
					version_number=1,
				)
			)
		with pytest.raises(IntegrityError):
			db.commit()
		db.rollback()

	def test_version_taken_by_a_concurrent_save_is_retried(self, db, monkeypatch):
		store.save_attempt(db, "student", 1, "first", result())
		real_next_version = store._next_version
		reads = []

		def stale_then_real(session, username, question_id):
			reads.append(question_id)
			# The first read misses the attempt another request has just stored
			if len(reads) == 1:
				return 1
			return real_next_version(session, username, question_id)

		monkeypatch.setattr(store, "_next_version", stale_then_real)
		row = store.save_attempt(db, "student", 1, "second", result(score=2))
		assert row.version_number == 2
		assert len(reads) == 2
		assert [r.version_number for r in store.load_history(db, "student", 1)] == [2, 1]

	def test_gives_up_when_the_version_keeps_colliding(self, db, monkeypatch):
		store.save_attempt(db, "student", 1, "first", result())
		monkeypatch.setattr(store, "_next_version", lambda *args: 1)
		with pytest.raises(IntegrityError):
			store.save_attempt(db, "student", 1, "second", result())
		assert len(store.load_history(db, "student", 1)) == 1
