#!/usr/bin/env python3
"""
Drive a running Care Alarm instance from the command line.

Usage:
    # Schedule follow-up reminders for a dose that went unanswered (fast timings)
    python scripts/alarm_tool.py schedule --patient-id p1 --schedule-id s1 --medication Levodopa --accelerated

    # Mark it taken
    python scripts/alarm_tool.py taken --patient-id p1 --schedule-id s1

    # Register a placeholder push address for a caregiver and start polling
    python scripts/alarm_tool.py placeholder --user-id c1
    python scripts/alarm_tool.py poll --caregiver-id c1

    # Watch notifications delivered to a user
    python scripts/alarm_tool.py listen --user-id c1
"""

import asyncio
import json
import uuid
from datetime import datetime, timezone

import httpx
import typer

app = typer.Typer()

BASE_URL = "http://localhost:8000"
API = f"{BASE_URL}/api/v1"


def _headers(user_id: str) -> dict[str, str]:
    return {"X-User-ID": user_id}


def _show(response: httpx.Response) -> None:
    if response.is_error:
        typer.echo(f"Request failed ({response.status_code}): {response.text}", err=True)
        raise typer.Exit(1)
    typer.echo(json.dumps(response.json(), indent=2))


@app.command()
def schedule(
    patient_id: str = typer.Option(..., help="Patient user id"),
    schedule_id: str = typer.Option(..., help="Medication schedule id"),
    medication: str = typer.Option("Levodopa", help="Medication name"),
    accelerated: bool = typer.Option(False, help="Use the short test timings"),
):
    """Schedule reminders 2 and 3 and the caregiver check, anchored at now."""
    body = {
        "alarmId": str(uuid.uuid4()),
        "patientId": patient_id,
        "medicationScheduleId": schedule_id,
        "medicationName": medication,
        "scheduledTime": datetime.now(timezone.utc).isoformat(),
        "accelerated": accelerated,
    }
    _show(httpx.post(f"{API}/alarms", json=body, headers=_headers(patient_id)))


@app.command()
def taken(
    patient_id: str = typer.Option(..., help="Patient user id"),
    schedule_id: str = typer.Option(..., help="Medication schedule id"),
):
    """Mark a dose taken."""
    _show(httpx.post(f"{API}/alarms/{schedule_id}/taken", headers=_headers(patient_id)))


@app.command()
def pending(user_id: str = typer.Option(..., help="User id")):
    """List pending deliveries."""
    _show(httpx.get(f"{API}/notifications/pending", headers=_headers(user_id)))


@app.command()
def placeholder(user_id: str = typer.Option(..., help="User id")):
    """Register a development placeholder push token."""
    _show(httpx.post(f"{API}/notifications/push-token/placeholder", headers=_headers(user_id)))


@app.command()
def poll(caregiver_id: str = typer.Option(..., help="Caregiver user id")):
    """Start caregiver alert polling."""
    _show(httpx.post(f"{API}/caregivers/polling/start", headers=_headers(caregiver_id)))


@app.command()
def listen(user_id: str = typer.Option(..., help="User id")):
    """Print notifications delivered to a user's devices."""
    asyncio.run(_listen(user_id))


async def _listen(user_id: str) -> None:
    typer.echo(f"Listening for notifications for {user_id} (Ctrl+C to stop)")
    async with httpx.AsyncClient(timeout=None) as client:
        async with client.stream(
            "GET", f"{API}/notifications/stream", headers=_headers(user_id)
        ) as response:
            if response.status_code != 200:
                typer.echo(f"Stream failed ({response.status_code})", err=True)
                raise typer.Exit(1)
            async for line in response.aiter_lines():
                if not line.startswith("data: "):
                    continue
                message = json.loads(line[len("data: "):])
                typer.echo(f"[{message.get('deliveredAt')}] {message.get('title')}: {message.get('body')}")


if __name__ == "__main__":
    app()
