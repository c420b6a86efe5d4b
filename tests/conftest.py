"""
Shared fixtures. Settings are read from the environment at import time, so the
database location and secrets are set before anything from markpal is imported.
No network calls: the judge is either the rule judge or a fake.
"""
import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="markpal-tests-")
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(_DB_DIR, "test.db")
os.environ["MAINTENANCE_INTERVAL_SECONDS"] = "0"
os.environ["MARKING_BACKEND"] = "rules"
os.environ["EXTRACTION_TIERS"] = "pro+"
os.environ["WEBHOOK_SECRET"] = "hook-secret"
os.environ["CRON_SECRET"] = "cron-secret"
os.environ["JWT_SECRET_KEY"] = "test-secret"
os.environ.pop("GEMINI_API_KEY", None)
os.environ.pop("OPENROUTER_API_KEY", None)

from datetime import datetime, timedelta

import pytest

from markpal.db import Base, SessionLocal, engine
from markpal.marking.schemas import MarkScheme, MarkSchemePoint, Question
from markpal.models import AuthUser


@pytest.fixture
def db():
	Base.metadata.drop_all(bind=engine)
	Base.metadata.create_all(bind=engine)
	session = SessionLocal()
	try:
		yield session
	finally:
		session.close()


@pytest.fixture
def make_user(db):
	def _make(username="student", tier="free", questions_left=5, reset_in_days=30):
		row = AuthUser(
			username=username,
			password_hash="not-a-real-hash",
			tier=tier,
			questions_left=questions_left,
			questions_reset_date=datetime.utcnow() + timedelta(days=reset_in_days),
		)
		db.add(row)
		db.commit()
		return row

	return _make


@pytest.fixture
def photosynthesis_question():
	"""Two one-mark points: the mark scheme used by the end-to-end marking scenarios."""
	scheme = MarkScheme(
		points=[
			MarkSchemePoint(ordinal=1, text="light energy absorbed by chlorophyll", weight=1),
			MarkSchemePoint(ordinal=2, text="produces oxygen", weight=1),
		]
	)
	return Question(id=None, text="Describe what happens in the light-dependent stage of photosynthesis.", max_marks=2, mark_scheme=scheme)


@pytest.fixture
def alveoli_question():
	scheme = MarkScheme(
		points=[
			MarkSchemePoint(ordinal=1, text="large surface / area", weight=1),
			MarkSchemePoint(ordinal=2, text="(large) capillary network OR good / efficient blood supply", weight=1),
			MarkSchemePoint(
				ordinal=3,
				text="walls are thin OR walls are one cell thick",
				weight=1,
				exclusions=["thin cell walls"],
			),
		]
	)
	return Question(text="Explain how the alveoli are adapted for gas exchange.", max_marks=3, mark_scheme=scheme)
