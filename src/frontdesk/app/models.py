from pydantic import BaseModel
from typing import List, Optional

from frontdesk.core.models import Surface


class SessionSummary(BaseModel):
    session_id: str
    actor_id: str
    role: str
    surface: Surface
    connected: bool


class AppState(BaseModel):
    started: bool
    background_running: bool
    sessions: List[SessionSummary]


class OpenSession(BaseModel):
    surface: Surface = Surface.DASHBOARD


class SurfaceUpdate(BaseModel):
    surface: Surface


class NewMessage(BaseModel):
    recipient_id: str
    content: str


class FeedEntry(BaseModel):
    key: str
    kind: str
    pending: bool
    record: dict


class ContactStatusOut(BaseModel):
    contact_id: str
    online: bool
    in_meeting: bool
    appointment_id: Optional[str] = None
