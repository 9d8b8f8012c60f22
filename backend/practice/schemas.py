from __future__ import annotations
from typing import Optional, List, Dict, Any
from pydantic import AliasChoices, BaseModel, Field, EmailStr
from datetime import datetime


# auth
class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    name: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserPublic(BaseModel):
    id: int
    email: Optional[str] = None
    name: Optional[str] = None
    role: str

    class Config:
        from_attributes = True


# clients
class RelationshipEntry(BaseModel):
    relatedClientId: str
    type: str


class ClientCreate(BaseModel):
    name: str = Field(..., min_length=1)
    email: Optional[str] = None
    phone: Optional[str] = None
    notes: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    relationships: Optional[List[RelationshipEntry]] = None
    new_client_form_signed: bool = False


class ClientUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    notes: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    relationships: Optional[List[RelationshipEntry]] = None
    new_client_form_signed: Optional[bool] = None


class ClientOut(BaseModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    notes: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias=AliasChoices("meta", "metadata"))
    relationships: Optional[List[Dict[str, Any]]] = None
    archived: bool = False
    archived_at: Optional[datetime] = None
    new_client_form_signed: bool = False
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ArchiveReq(BaseModel):
    id: str
    restore: bool = False


# sessions (appointments)
class SessionCreate(BaseModel):
    client_id: Optional[str] = None
    date: datetime
    duration: int = Field(60, gt=0)
    type: Optional[str] = None
    notes: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class SessionUpdate(BaseModel):
    client_id: Optional[str] = None
    date: Optional[datetime] = None
    duration: Optional[int] = Field(None, gt=0)
    type: Optional[str] = None
    notes: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class SessionOut(BaseModel):
    id: str
    client_id: Optional[str] = None
    date: datetime
    duration: Optional[int] = None
    type: Optional[str] = None
    notes: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias=AliasChoices("meta", "metadata"))
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SessionNoteCreate(BaseModel):
    client_id: Optional[str] = None
    session_id: Optional[str] = None
    content: Optional[str] = None
    transcript: Optional[str] = None
    audio_url: Optional[str] = None


class SessionNoteOut(SessionNoteCreate):
    id: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RecordingOut(BaseModel):
    id: str
    client_id: Optional[str] = None
    session_id: Optional[str] = None
    title: Optional[str] = None
    audio_url: Optional[str] = None
    transcript: Optional[str] = None
    duration: Optional[int] = None
    recording_status: Optional[str] = None
    transcript_status: Optional[str] = None
    allocation_status: Optional[str] = None
    flagged: bool = False
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# reminders / email
class EmailTemplate(BaseModel):
    subject: Optional[str] = None
    body: Optional[str] = None


class TestEmailReq(BaseModel):
    email: Optional[str] = None
    template: Optional[EmailTemplate] = None


class AdminReminderOut(BaseModel):
    id: str
    type: str
    client_id: Optional[str] = None
    session_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    is_active: bool
    last_sent_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class EmailHistoryOut(BaseModel):
    id: str
    client_id: Optional[str] = None
    session_id: Optional[str] = None
    to_email: str
    subject: Optional[str] = None
    kind: str
    status: str
    error: Optional[str] = None
    sent_at: Optional[datetime] = None

    class Config:
        from_attributes = True
