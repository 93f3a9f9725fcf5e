from pydantic import BaseModel, Field
from typing import Annotated, Optional, Any, Dict, Literal, Union
from datetime import datetime


# Columns requested from Supabase; is_ai_processing is client-only and never stored
TASK_COLUMNS = "id,title,completed,created_at,user_id,description"
TASK_FIELDS = ("id", "title", "completed", "created_at", "user_id", "description")


class User(BaseModel):
    id: str
    email: Optional[str] = None


class Task(BaseModel):
    id: str
    title: str
    completed: bool = False
    created_at: Optional[datetime] = None
    user_id: str
    description: Optional[str] = None
    is_ai_processing: bool = False

    def row(self) -> Dict[str, Any]:
        """Persisted columns only."""
        return self.model_dump(include=set(TASK_FIELDS))


class TaskCreate(BaseModel):
    title: str = Field(examples=["Buy milk"])


class TaskUpdate(BaseModel):
    completed: Optional[bool] = None
    title: Optional[str] = None
    description: Optional[str] = None


class CreateAction(BaseModel):
    action: Literal["create"] = "create"
    title: str


class ReplyAction(BaseModel):
    action: Literal["reply"] = "reply"
    text: str


ClassificationResult = Annotated[Union[CreateAction, ReplyAction], Field(discriminator="action")]


class TaskChange(BaseModel):
    """A realtime postgres_changes event on the tasks table."""

    type: Literal["INSERT", "UPDATE", "DELETE"]
    record: Optional[Dict[str, Any]] = None
    old_record: Optional[Dict[str, Any]] = None

    @property
    def task_id(self) -> Optional[str]:
        for rec in (self.record, self.old_record):
            if isinstance(rec, dict) and rec.get("id") is not None:
                return str(rec["id"])
        return None


class TriggerRequest(BaseModel):
    taskId: Optional[Any] = None
    title: Optional[Any] = None


class ChatProxyRequest(BaseModel):
    message: Optional[Any] = None
    user_id: Optional[Any] = None


class Credentials(BaseModel):
    email: str
    password: str


class Session(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    user: User


class WhatsAppLink(BaseModel):
    phone: str


class WhatsAppLinkResponse(BaseModel):
    phone: str
    whatsapp_url: str


