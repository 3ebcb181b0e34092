"""
Locust Load Test Suite

Run scenarios:
  locust -f locustfile.py --tags clicks     # Concurrent pick-and-bump
  locust -f locustfile.py --tags webhooks   # Duplicate webhook deliveries
  locust -f locustfile.py --tags edge       # Bad input
  locust -f locustfile.py                   # All tests

Environment:
  LOAD_CREATOR_ID        creator whose targets receive the clicks
  SECRET_KEY             must match the API, used to mint creator tokens
  STRIPE_WEBHOOK_SECRET  must match the API, used to sign deliveries
"""

import hashlib
import hmac
import json
import os
import random
import time
import uuid
from datetime import datetime, timedelta, timezone

import jwt
import requests
from locust import HttpUser, task, between, tag, events

CREATOR_ID = os.environ.get("LOAD_CREATOR_ID", "load-creator")
SECRET_KEY = os.environ.get("SECRET_KEY", "super-secret-key-change-in-production")
WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "whsec_test")

# Session ids shared by every webhook user so deliveries collide
REPLAY_SESSION_IDS = [f"cs_load_{i}" for i in range(20)]


def token_for(user_id: str) -> str:
    expire = datetime.now(timezone.utc) + timedelta(hours=1)
    return jwt.encode({"sub": user_id, "exp": expire}, SECRET_KEY, algorithm="HS256")


def signed(payload: bytes) -> str:
    timestamp = int(time.time())
    mac = hmac.new(WEBHOOK_SECRET.encode(), f"{timestamp}.".encode() + payload, hashlib.sha256)
    return f"t={timestamp},v1={mac.hexdigest()}"


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    """Setup: register three weighted targets for the load creator."""
    if not environment.host:
        return

    headers = {"Authorization": f"Bearer {token_for(CREATOR_ID)}"}
    for name, weight in (("alpha", 1), ("bravo", 2), ("charlie", 3)):
        requests.post(
            f"{environment.host}/api/booking-targets",
            json={"name": name, "destination_url": f"https://cal.example.com/{name}", "weight": weight},
            headers=headers,
            timeout=10,
        )
    requests.put(
        f"{environment.host}/api/booking-targets/routing",
        json={"mode": "weighted"},
        headers=headers,
        timeout=10,
    )
    print(f"\nSETUP: weighted targets ready for {CREATOR_ID}\n")


class ClickUser(HttpUser):
    """
    TEST 1: Concurrent clicks - every click must bump exactly one counter

    Run: locust -f locustfile.py --tags clicks -u 100 -r 50 --run-time 30s

    After test, verify:
      SELECT SUM(uses_count) FROM booking_targets WHERE creator_id = 'load-creator';
      SELECT COUNT(*) FROM booking_clicks WHERE creator_id = 'load-creator';
    Both should equal the number of 302 responses; the split should be ~1:2:3.
    """
    wait_time = between(0, 0.1)

    @tag("clicks")
    @task
    def click_book(self):
        with self.client.get(
            f"/api/book?creator_id={CREATOR_ID}",
            allow_redirects=False,
            name="/api/book",
            catch_response=True,
        ) as resp:
            if resp.status_code == 302:
                resp.success()
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class WebhookReplayUser(HttpUser):
    """
    TEST 2: At-least-once deliveries - many copies of the same events

    Run: locust -f locustfile.py --tags webhooks -u 50 -r 25 --run-time 30s

    After test, verify:
      SELECT COUNT(*) FROM purchases WHERE external_session_id LIKE 'cs_load_%';
    Should be <= 20 no matter how many deliveries were sent.
    """
    wait_time = between(0, 0.2)

    @tag("webhooks")
    @task
    def deliver_paid_session(self):
        session_id = random.choice(REPLAY_SESSION_IDS)
        event = {
            "id": f"evt_{session_id}",
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "id": session_id,
                    "mode": "payment",
                    "payment_status": "paid",
                    "payment_intent": f"pi_{session_id}",
                    "amount_total": 5000,
                    "currency": "usd",
                    "metadata": {"buyer_id": f"buyer_{session_id}", "creator_id": CREATOR_ID},
                }
            },
        }
        payload = json.dumps(event).encode()
        with self.client.post(
            "/api/stripe/webhook",
            data=payload,
            headers={"Stripe-Signature": signed(payload), "Content-Type": "application/json"},
            name="/api/stripe/webhook",
            catch_response=True,
        ) as resp:
            if resp.status_code == 200 and resp.json().get("ok"):
                resp.success()
            else:
                resp.failure(f"Unexpected: {resp.status_code} {resp.text[:100]}")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = {"Authorization": f"Bearer {token_for(CREATOR_ID)}"}

    @tag("edge")
    @task
    def missing_creator(self):
        with self.client.get("/api/book", allow_redirects=False, catch_response=True) as resp:
            if resp.status_code == 400:
                resp.success()
            else:
                resp.failure(f"Expected 400, got {resp.status_code}")

    @tag("edge")
    @task
    def unknown_creator(self):
        with self.client.get(
            f"/api/book?creator_id={uuid.uuid4()}",
            allow_redirects=False,
            name="/api/book [unknown]",
            catch_response=True,
        ) as resp:
            if resp.status_code == 404:
                resp.success()
            else:
                resp.failure(f"Expected 404, got {resp.status_code}")

    @tag("edge")
    @task
    def forged_webhook(self):
        with self.client.post(
            "/api/stripe/webhook",
            data=b'{"id": "evt_forged", "type": "charge.refunded"}',
            headers={"Stripe-Signature": "t=1,v1=deadbeef"},
            catch_response=True,
        ) as resp:
            if resp.status_code == 400:
                resp.success()
            else:
                resp.failure(f"Expected 400, got {resp.status_code}")

    @tag("edge")
    @task
    def bad_installment_plan(self):
        with self.client.post(
            "/api/bookings/missing/payment-link",
            json={"plan_type": "installment", "installment_months": 99},
            headers=self.headers,
            name="/api/bookings/{id}/payment-link",
            catch_response=True,
        ) as resp:
            if resp.status_code in [400, 404]:
                resp.success()
            else:
                resp.failure(f"Expected 400/404, got {resp.status_code}")

    @tag("edge")
    @task
    def missing_auth(self):
        with self.client.get("/api/bookings", catch_response=True) as resp:
            if resp.status_code == 401:
                resp.success()
            else:
                resp.failure(f"Expected 401, got {resp.status_code}")
