"""
PromptForm test configuration and fixtures.
No network: the model gateway is a scripted fake and the repository is SQLite in memory.
"""
import itertools
import os
from datetime import datetime, timedelta, timezone

import pytest

# Configure before any promptform import reads the environment
os.environ.setdefault("GEMINI_API_KEY", "test-api-key")
os.environ["STORE_BACKEND"] = "sql"
os.environ.setdefault("LOG_LEVEL", "WARNING")

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from promptform.backend import FormService
from promptform.errors import UpstreamEmpty
from promptform.form_repository import SqlFormRepository
from promptform.google_helpers import create_session_factory
from promptform.prompt_compiler import PromptCompiler
from server import create_app


class FakeLlm:
    """Scripted stand-in for LlmClient: replies are consumed in order, exceptions are raised."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    def queue(self, *replies):
        self.replies.extend(replies)

    def send(self, prompt, *, image=None, json_mode=True):
        self.calls.append({"prompt": prompt, "image": image, "json_mode": json_mode})
        if not self.replies:
            raise UpstreamEmpty()
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def make_clock(start=None):
    base = start or datetime(2025, 1, 1, tzinfo=timezone.utc)
    ticks = itertools.count()
    return lambda: base + timedelta(seconds=next(ticks))


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def repository(session_factory):
    return SqlFormRepository(session_factory, clock=make_clock())


@pytest.fixture
def llm():
    return FakeLlm()


@pytest.fixture
def service(llm, repository, tmp_path):
    return FormService(
        llm,
        repository,
        compiler=PromptCompiler(doc_char_limit=15000, json_char_limit=20000),
        max_upload_bytes=1024 * 1024,
        temp_dir=str(tmp_path / "uploads"),
    )


@pytest.fixture
def client(service):
    app = create_app(service=service)
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


@pytest.fixture
def radio_form():
    return {
        "title": "Favourite letter",
        "fields": [
            {"label": "Q1", "name": "q1", "type": "radio", "options": ["A", "B"]},
            {"label": "Submit", "name": "submit", "type": "submit"},
        ],
    }


@pytest.fixture
def personality_form():
    return {
        "title": "Which explorer are you?",
        "isQuiz": True,
        "quizType": "OUTCOME",
        "fields": [
            {
                "label": "Weekend plan",
                "name": "weekend",
                "type": "radio",
                "options": ["Hike", "Read"],
                "scoring": [
                    {"option": "Hike", "points": 2, "outcomeId": "adventurer"},
                    {"option": "Read", "points": 2, "outcomeId": "thinker"},
                ],
            },
            {
                "label": "Traits",
                "name": "traits",
                "type": "radioGrid",
                "rows": ["Bold", "Calm"],
                "columns": [{"label": "Yes", "points": None}, {"label": "No", "points": None}],
                "scoring": [
                    {"column": "Yes", "points": 1, "outcomeId": "adventurer"},
                    {"column": "No", "points": 1, "outcomeId": "thinker"},
                ],
            },
            {"label": "Submit", "name": "submit", "type": "submit"},
        ],
        "resultPages": [
            {"outcomeId": "adventurer", "title": "Adventurer", "description": "", "scoreRange": {"from": 0, "to": 1}},
            {"outcomeId": "thinker", "title": "Thinker", "description": "", "scoreRange": {"from": 2, "to": 3}},
        ],
    }
