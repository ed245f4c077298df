import sys
import os

# Add the project root to sys.path
sys.path.append(os.path.abspath(os.path.dirname(__file__) + "/.."))

import pytest

from categories import ModerationCategory
from schemas import ClassifierResponse


def build_payload(scores=None, flags=None, default_score=0.001, response_id="modr-test",
                  model="omni-moderation-latest", units=1) -> dict:
    """Classifier response in OpenAI wire shape; unspecified categories get ``default_score``."""
    scores = scores or {}
    flags = flags or {}
    names = [category.value for category in ModerationCategory]
    result = {
        "flagged": any(flags.values()),
        "categories": {name: flags.get(name, False) for name in names},
        "category_scores": {name: scores.get(name, default_score) for name in names},
    }
    return {"id": response_id, "model": model, "results": [result] * units}


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeClassifier:
    """Stands in for ModerationClassifier; counts remote calls."""

    model = "omni-moderation-latest"
    use_mock_server = False
    configured = True

    def __init__(self, payload=None, errors=None) -> None:
        self.payload = payload if payload is not None else build_payload()
        self.errors = list(errors or [])
        self.calls = 0
        self.texts = []

    async def classify(self, text: str) -> ClassifierResponse:
        self.calls += 1
        self.texts.append(text)
        if self.errors:
            raise self.errors.pop(0)
        return ClassifierResponse.model_validate(self.payload)


class FakeRedis:
    """In-memory stand-in for the redis.asyncio client."""

    def __init__(self) -> None:
        self.values = {}
        self.lists = {}
        self.closed = False

    async def get(self, key):
        return self.values.get(key)

    async def set(self, key, value, ex=None, nx=False):
        if nx and key in self.values:
            return None
        self.values[key] = value
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            removed += int(self.values.pop(key, None) is not None)
            removed += int(self.lists.pop(key, None) is not None)
        return removed

    async def rpush(self, key, *values):
        self.lists.setdefault(key, []).extend(values)
        return len(self.lists[key])

    async def lpop(self, key):
        items = self.lists.get(key)
        return items.pop(0) if items else None

    async def lrange(self, key, start, end):
        items = self.lists.get(key, [])
        return list(items[start:] if end == -1 else items[start:end + 1])

    async def ping(self):
        return True

    async def aclose(self):
        self.closed = True


@pytest.fixture
def make_payload():
    return build_payload


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_classifier():
    return FakeClassifier()


@pytest.fixture
def classifier_factory():
    return FakeClassifier


@pytest.fixture
def fake_redis():
    return FakeRedis()
