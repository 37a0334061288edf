"""
Locust Load Test Suite

Run scenarios:
  locust -f locustfile.py --tags contention   # Many shoppers, few seats
  locust -f locustfile.py --tags throughput   # Seat map reads
  locust -f locustfile.py --tags edge         # Bad input
  locust -f locustfile.py                     # All tests

Tokens are minted locally with the API's SECRET_KEY (identity is external
in production). Export the same SECRET_KEY the API runs with.
"""

import os
import random
import uuid
from datetime import datetime, timezone, timedelta

import jwt
from locust import HttpUser, task, between, tag, events

SECRET_KEY = os.environ.get("SECRET_KEY", "super-secret-key-change-in-production")
ALGORITHM = os.environ.get("ALGORITHM", "HS256")
PAYMENT_SECRET = os.environ.get("PAYMENT_CALLBACK_SECRET", "payment-callback-secret-change-in-production")

# Shared state
SHOW_IDS = []
CONTENTION_SHOW_ID = None
CONTENTION_SEATS = [f"A{n}" for n in range(1, 11)]


def make_headers(subject: str, role: str = "customer") -> dict:
    token = jwt.encode(
        {
            "sub": subject,
            "role": role,
            "exp": datetime.now(timezone.utc) + timedelta(hours=2),
        },
        SECRET_KEY,
        algorithm=ALGORITHM,
    )
    return {"Authorization": f"Bearer {token}"}


ADMIN_HEADERS = make_headers("locust-admin", role="admin")


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "="*60)
    print("SETUP: seats A1-A10 of one show are contended by every ContentionUser")
    print("="*60)


class ContentionUser(HttpUser):
    """
    TEST 1: Contention - many shoppers -> 10 seats

    Run: locust -f locustfile.py --tags contention -u 100 -r 50 --run-time 30s

    After test, verify no seat was sold or held twice:
      SELECT seat_id, COUNT(*) FROM occupied_seats WHERE show_id = X GROUP BY seat_id HAVING COUNT(*) > 1;
    Should return no rows (the primary key makes it impossible; this proves it held up).
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.headers = make_headers(f"shopper-{uuid.uuid4().hex[:8]}")

        if not CONTENTION_SHOW_ID:
            future = (datetime.now(timezone.utc) + timedelta(days=30)).isoformat()
            resp = self.client.post("/api/v1/shows/",
                json={
                    "title": "Contention Test Screening",
                    "starts_at": future,
                    "price": "10.00",
                    "layout_ref": "10 seats only",
                },
                headers=ADMIN_HEADERS,
            )
            if resp.status_code == 201:
                globals()["CONTENTION_SHOW_ID"] = resp.json()["id"]
                print(f"\n✓ Created show {CONTENTION_SHOW_ID}\n")

    @tag("contention")
    @task(5)
    def hold_contended_seats(self):
        """Everyone grabs 1-2 of the same 10 seats, confirms some, releases others."""
        if not CONTENTION_SHOW_ID:
            return

        seats = random.sample(CONTENTION_SEATS, k=random.randint(1, 2))
        with self.client.post("/api/v1/reservations/",
            json={"show_id": CONTENTION_SHOW_ID, "seats": seats},
            headers=self.headers,
            catch_response=True,
            name="/api/v1/reservations/ [contended]",
        ) as resp:
            if resp.status_code == 201:
                resp.success()
                reservation_id = resp.json()["reservation_id"]
            elif resp.status_code == 409:
                resp.success()  # Expected: seat taken
                return
            else:
                resp.failure(f"Unexpected: {resp.status_code}")
                return

        if random.random() < 0.5:
            self.client.post(f"/api/v1/reservations/{reservation_id}/confirm",
                json={"payment_reference": f"pi_{uuid.uuid4().hex[:12]}"},
                headers={"X-Payment-Signature": PAYMENT_SECRET},
                name="/api/v1/reservations/{id}/confirm",
            )
        else:
            self.client.post(f"/api/v1/reservations/{reservation_id}/release",
                headers=self.headers,
                name="/api/v1/reservations/{id}/release",
            )

    @tag("contention", "read")
    @task(3)
    def view_contended_seat_map(self):
        if CONTENTION_SHOW_ID:
            self.client.get(f"/api/v1/shows/{CONTENTION_SHOW_ID}/seats",
                name="/api/v1/shows/{id}/seats [contended]")


class ThroughputUser(HttpUser):
    """
    TEST 2: Throughput - seat map reads

    Run: locust -f locustfile.py --tags throughput -u 100 -r 20 --run-time 60s

    Compare avg / P95 / P99 of the snapshot endpoint with the write load of
    ContentionUser running and without it.
    """
    wait_time = between(0.1, 0.5)

    @tag("throughput", "read")
    @task(10)
    def list_shows(self):
        resp = self.client.get("/api/v1/shows/?page=1&page_size=20")
        if resp.status_code == 200:
            for show in resp.json().get("shows", []):
                if show["id"] not in SHOW_IDS:
                    SHOW_IDS.append(show["id"])

    @tag("throughput", "read")
    @task(5)
    def seat_snapshot(self):
        if SHOW_IDS:
            self.client.get(f"/api/v1/shows/{random.choice(SHOW_IDS)}/seats",
                name="/api/v1/shows/{id}/seats")

    @tag("throughput")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = make_headers(f"edge-{uuid.uuid4().hex[:8]}")

    def _expect(self, resp, codes):
        if resp.status_code in codes:
            resp.success()
        else:
            resp.failure(f"Expected {codes}, got {resp.status_code}")

    @tag("edge")
    @task
    def unknown_show(self):
        with self.client.post("/api/v1/reservations/",
            json={"show_id": str(uuid.uuid4()), "seats": ["A1"]},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, [404])

    @tag("edge")
    @task
    def empty_selection(self):
        with self.client.post("/api/v1/reservations/",
            json={"show_id": str(uuid.uuid4()), "seats": []},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, [422])

    @tag("edge")
    @task
    def duplicate_seats(self):
        with self.client.post("/api/v1/reservations/",
            json={"show_id": str(uuid.uuid4()), "seats": ["A1", "A1"]},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, [422])

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post("/api/v1/reservations/",
            data="not json at all",
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, [400, 422])

    @tag("edge")
    @task
    def forged_confirmation(self):
        with self.client.post(f"/api/v1/reservations/{uuid.uuid4()}/confirm",
            headers={"X-Payment-Signature": "forged"},
            catch_response=True,
            name="/api/v1/reservations/{id}/confirm [forged]",
        ) as resp:
            self._expect(resp, [401])

    @tag("edge")
    @task
    def missing_auth(self):
        with self.client.post("/api/v1/reservations/",
            json={"show_id": str(uuid.uuid4()), "seats": ["A1"]},
            catch_response=True,
        ) as resp:
            self._expect(resp, [401])
