#!/usr/bin/env python3
"""
itemwire example — simulate a vehicle telemetry feed.

Publishes position updates for a few vehicles and shows what each
broadcast cycle did. Open a subscriber first to watch one vehicle:

    websocat 'ws://localhost:8000/ws?vehicleId=V1'

Run with: python examples/vehicle_feed.py

Requires: pip install httpx
Server must be running with ITEMWIRE_TOPIC_KEY_NAME=vehicleId:
    ITEMWIRE_TOPIC_KEY_NAME=vehicleId itemwire serve
"""

import random
import sys
import time

import httpx

BASE = "http://localhost:8000/api/v1"
VEHICLES = ["V1", "V2", "V3"]


def main():
    client = httpx.Client(base_url=BASE, timeout=10)

    # ── Health check ──────────────────────────────────────────────
    print("Checking server health...")
    try:
        resp = client.get("/health")
    except httpx.ConnectError:
        print(f"Server not reachable at {BASE}")
        sys.exit(1)
    health = resp.json()
    print(f"  Registry: {'✓' if health['registry'] == 'ok' else '✗'}")
    print(f"  Sockets:  {health['connections']}")

    # ── Who is listening ──────────────────────────────────────────
    subs = client.get("/subscriptions").json()
    print(f"\n{len(subs)} subscription(s)")
    for sub in subs:
        print(f"  {sub['connection_id'][:8]}... → {sub['topic_value']}")

    # ── Publish updates ───────────────────────────────────────────
    print("\nPublishing updates (Ctrl+C to stop)...")
    try:
        while True:
            vehicle = random.choice(VEHICLES)
            attributes = {
                "vehicleId": vehicle,
                "speed": random.randint(0, 120),
                "lat": round(52.37 + random.uniform(-0.05, 0.05), 5),
                "lng": round(4.89 + random.uniform(-0.05, 0.05), 5),
            }
            resp = client.post("/events", json={"attributes": attributes})
            report = resp.json()
            if resp.status_code != 200:
                print(f"  {vehicle}: FAILED {report['detail']}")
            elif report["status"] == "sent":
                print(
                    f"  {vehicle}: delivered to {report['delivered']}, "
                    f"evicted {len(report['evicted'])}"
                )
            else:
                print(f"  {vehicle}: {report['status']}")
            time.sleep(1)
    except KeyboardInterrupt:
        print("\nDone.")


if __name__ == "__main__":
    main()
