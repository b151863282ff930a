from fastapi import FastAPI, HTTPException
from pathlib import Path
from pydantic import BaseModel
from collections import deque
from typing import Deque, Dict
import json
import os
import uuid

app = FastAPI(title="Mock EMI Collaborators", version="1.0.0")
# Support both local development and Docker
STUB_FILE = Path("/collaborator_stub/credit_limits.json")
DEFAULT_LIMITS = {"user_good": 100000, "user_thin": 5000, "user_blocked": 0}

# Last notifications the endpoint accepted, newest last; test stub only
SENT_NOTIFICATIONS_LIMIT = 1000
SENT_NOTIFICATIONS: Deque[dict] = deque(maxlen=SENT_NOTIFICATIONS_LIMIT)


def load_credit_limits() -> Dict[str, int]:
    if os.path.exists(STUB_FILE):
        return json.loads(STUB_FILE.read_text())
    return DEFAULT_LIMITS


class EligibilityRequest(BaseModel):
    user_id: str
    principal: int


class NotificationRequest(BaseModel):
    user_id: str
    template_type: str
    channel: str = "push"
    substitutions: Dict[str, str] = {}
    title: str = ""
    body: str = ""


@app.get("/health")
def health(): return {"status": "ok"}


@app.post("/eligibility/check")
def check_eligibility(request: EligibilityRequest):
    limits = load_credit_limits()
    if request.user_id not in limits:
        raise HTTPException(status_code=404, detail="user not found")
    credit_limit = limits[request.user_id]
    return {"approved": credit_limit > 0, "credit_limit": credit_limit}


@app.post("/notifications")
def send_notification(request: NotificationRequest):
    if request.user_id.startswith("unreachable"):
        raise HTTPException(status_code=503, detail="channel unavailable")
    SENT_NOTIFICATIONS.append(request.model_dump())
    return {"notification_id": str(uuid.uuid4()), "status": "delivered"}
