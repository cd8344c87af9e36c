import os

from locust import HttpUser, task, constant

# Bearer token for an onboarded user; metrics tasks are skipped without it
TOKEN = os.environ.get("HEALTHTARGETS_TOKEN")


class FastAPIUser(HttpUser):
    wait_time = constant(0)

    @task
    def health(self):
        with self.client.get("/health", catch_response=True) as r:
            if r.status_code != 200:
                r.failure("Healthcheck failed")

    @task(3)
    def today_metrics(self):
        if not TOKEN:
            return
        headers = {"Authorization": f"Bearer {TOKEN}"}
        with self.client.get("/metrics/today", headers=headers, catch_response=True) as r:
            if r.status_code not in (200, 404):
                r.failure(f"Unexpected status {r.status_code}")

    @task
    def plan_state(self):
        if not TOKEN:
            return
        headers = {"Authorization": f"Bearer {TOKEN}"}
        with self.client.get("/plan/state", headers=headers, catch_response=True) as r:
            if r.status_code != 200:
                r.failure(f"Unexpected status {r.status_code}")
