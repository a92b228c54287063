"""
Load test script for the Serious People backend.

Simulates the end of a coaching session:
  1. Health check
  2. Request the user's Serious Plan (idempotent)
  3. Poll until the artifacts and coach letter are ready
  4. Read the coach chat

Each simulated user needs a finished interview and all three modules, so
point LOAD_TEST_TOKEN at a seeded account (a session token from
/api/auth/magic-link/verify).

Run:
    pip install locust
    locust -f tests/load/locustfile.py --host https://YOUR-DEPLOYMENT-URL

Then open http://localhost:8089 to configure users/spawn rate and start.
"""

import os
import time
from locust import HttpUser, task, between, SequentialTaskSet


# ---------------------------------------------------------------------------
# Configuration, overridable with env vars per environment
# ---------------------------------------------------------------------------
AUTH_TOKEN = os.getenv("LOAD_TEST_TOKEN", "")
POLL_INTERVAL_SECONDS = float(os.getenv("LOAD_TEST_POLL_SECONDS", "2"))
MAX_POLLS = int(os.getenv("LOAD_TEST_MAX_POLLS", "90"))


def auth_headers():
    headers = {"X-Correlation-ID": f"load-test-{time.monotonic()}"}
    if AUTH_TOKEN:
        headers["Authorization"] = f"Bearer {AUTH_TOKEN}"
    return headers


# ---------------------------------------------------------------------------
# Sequential flow: init plan, poll, read chat
# ---------------------------------------------------------------------------
class SeriousPlanFlow(SequentialTaskSet):
    """Request the plan, then poll statusSummary like the results page does."""

    plan_id = None

    @task
    def init_plan(self):
        with self.client.post(
            "/api/serious-plan",
            headers=auth_headers(),
            name="/api/serious-plan",
            catch_response=True,
        ) as resp:
            if resp.status_code == 200:
                self.plan_id = resp.json().get("planId")
                if not self.plan_id:
                    resp.failure("No planId in response")
            elif resp.status_code == 409:
                # Dossier still being written; the client would retry
                resp.success()
            else:
                resp.failure(f"Init failed: {resp.status_code}")

    @task
    def poll_plan(self):
        if not self.plan_id:
            return

        for _ in range(MAX_POLLS):
            with self.client.get(
                f"/api/serious-plan/{self.plan_id}",
                headers=auth_headers(),
                name="/api/serious-plan/[id]",
                catch_response=True,
            ) as resp:
                if resp.status_code != 200:
                    resp.failure(f"Poll error: {resp.status_code}")
                    return

                summary = resp.json().get("statusSummary") or {}
                if summary.get("planStatus") == "error":
                    resp.failure("Artifact generation failed")
                    return
                if summary.get("artifactsReady") and not summary.get("inProgress"):
                    resp.success()
                    return

            time.sleep(POLL_INTERVAL_SECONDS)

        # Timeout
        self.client.get(
            f"/api/serious-plan/{self.plan_id}",
            headers=auth_headers(),
            name="/api/serious-plan/[id] (timeout)",
        )

    @task
    def read_chat(self):
        if self.plan_id:
            self.client.get(
                f"/api/coach-chat/{self.plan_id}/messages",
                headers=auth_headers(),
                name="/api/coach-chat/[id]/messages",
            )

    @task
    def stop(self):
        self.interrupt()


# ---------------------------------------------------------------------------
# User class
# ---------------------------------------------------------------------------
class SeriousPeopleUser(HttpUser):
    """Simulates a client returning to their plan."""

    wait_time = between(1, 3)

    @task(3)
    def health_check(self):
        """Checks DB, Redis and circuit states."""
        self.client.get("/health", name="/health")

    @task(1)
    def transcript(self):
        self.client.get("/api/transcript", headers=auth_headers(), name="/api/transcript")

    @task(1)
    def metrics(self):
        """Fetch in-process metrics."""
        self.client.get("/metrics", name="/metrics")

    tasks = {SeriousPlanFlow: 1}
