from locust import HttpUser, task, between
import json
import random

SAMPLE_POSTS = [
    "I love coding and technology",
    "Shipping a new release today, wish us luck!",
    "Coffee first, then code reviews.",
    "This is a Test Sentence.",
]


class FastAPITestUser(HttpUser):
    wait_time = between(1, 2)  # Simulate real-world traffic

    def on_start(self):
        """Initialize storage for queued post IDs"""
        self.post_ids = []

    @task(3)
    def test_moderate(self):
        """Load test for moderation endpoint (repeated texts exercise the cache)"""
        self.client.post("/api/v1/moderate", json={"content": random.choice(SAMPLE_POSTS)})

    @task(1)
    def test_create_post(self):
        """Load test for moderated post creation"""
        response = self.client.post("/api/v1/posts", json={"content": random.choice(SAMPLE_POSTS)})
        if response.status_code == 200:
            try:
                data = response.json()
                if "id" in data:
                    self.post_ids.append(data["id"])
            except json.JSONDecodeError:
                pass  # Ignore invalid JSON responses

    @task(1)
    def test_get_post_status(self):
        """Load test for fetching publication status using stored IDs"""
        if self.post_ids:
            post_id = self.post_ids.pop(0)  # Get and remove the first stored ID
            self.client.get(f"/api/v1/posts/{post_id}", name="/api/v1/posts/[id]")
