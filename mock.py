from fastapi import FastAPI
from pydantic import BaseModel
import random
import uuid

from categories import ModerationCategory
from config import MODERATION_MODEL

# Mock Moderation Classifier
mock_app = FastAPI(title="Mock Moderation Classifier")

# Categories the omni models report on top of the ones postguard decides on
EXTRA_CATEGORIES = ("illicit", "illicit/violent")


# Request Model for Text Moderation
class MockModerationRequest(BaseModel):
    input: str
    model: str = MODERATION_MODEL


def _random_score(harmful: bool) -> float:
    """Mostly-clean scores, with the odd strong signal to exercise blocking."""
    if harmful:
        return round(random.uniform(0.5, 1.0), 7)
    return round(random.uniform(0.0, 0.02), 7)


@mock_app.post("/v1/moderations")
async def mock_moderate_text(request: MockModerationRequest) -> dict:
    """Simulates OpenAI's Moderation API Response For Text"""
    names = [category.value for category in ModerationCategory] + list(EXTRA_CATEGORIES)
    harmful = {name: random.random() < 0.05 for name in names}
    scores = {name: _random_score(harmful[name]) for name in names}
    flags = {name: harmful[name] and scores[name] >= 0.8 for name in names}

    fake_response = {
        "id": "modr-" + str(uuid.uuid4()),
        "model": request.model,
        "results": [
            {
                "flagged": any(flags.values()),
                "categories": flags,
                "category_scores": scores,
                "category_applied_input_types": {name: ["text"] if harmful[name] else [] for name in names},
            }
        ]
    }
    return fake_response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("mock:mock_app", host="127.0.0.1", port=8080, reload=True)
