import enum
import math
import uuid
from datetime import datetime

from sqlalchemy import (
    String, DateTime, Integer, Float, Boolean, ForeignKey, Text, Enum, JSON, Index, UniqueConstraint, event, inspect
)
from sqlalchemy.ext.orderinglist import ordering_list
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from .db import Base
from .utils import utcnow


class TaskStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

class TaskPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

class TaskCategory(str, enum.Enum):
    PERSONAL = "personal"
    WORK = "work"
    STUDY = "study"
    HEALTH = "health"
    FINANCE = "finance"
    OTHER = "other"

class NoteCategory(str, enum.Enum):
    PERSONAL = "personal"
    WORK = "work"
    STUDY = "study"
    IDEAS = "ideas"
    MEETING = "meeting"
    RESEARCH = "research"
    OTHER = "other"

class Permission(str, enum.Enum):
    READ = "read"
    WRITE = "write"

class ChatRole(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"

class ChatContext(str, enum.Enum):
    GENERAL = "general"
    TASK_HELP = "task_help"
    NOTE_HELP = "note_help"
    STUDY_HELP = "study_help"
    PLANNING = "planning"
    OTHER = "other"

class ReactionType(str, enum.Enum):
    LIKE = "like"
    DISLIKE = "dislike"
    HELPFUL = "helpful"
    NOT_HELPFUL = "not_helpful"

class Theme(str, enum.Enum):
    LIGHT = "light"
    DARK = "dark"
    AUTO = "auto"


def uuid_str():
    return str(uuid.uuid4())

def _enum(cls):
    # persist the lowercase values, not the member names
    return Enum(cls, values_callable=lambda e: [m.value for m in e], native_enum=False, length=20)


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    username: Mapped[str] = mapped_column(String(30), unique=True, index=True)
    email: Mapped[str] = mapped_column(String(254), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    first_name: Mapped[str] = mapped_column(String(50))
    last_name: Mapped[str] = mapped_column(String(50))
    avatar: Mapped[str | None] = mapped_column(Text, nullable=True)

    theme: Mapped[Theme] = mapped_column(_enum(Theme), default=Theme.LIGHT)
    notifications: Mapped[bool] = mapped_column(Boolean, default=True)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC")

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_login: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    tasks: Mapped[list["Task"]] = relationship(back_populates="user", cascade="all, delete-orphan")
    notes: Mapped[list["Note"]] = relationship(
        back_populates="user", cascade="all, delete-orphan", foreign_keys="Note.user_id"
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def preferences(self) -> dict:
        theme = self.theme.value if isinstance(self.theme, Theme) else (self.theme or Theme.LIGHT.value)
        notifications = True if self.notifications is None else self.notifications
        return {"theme": theme, "notifications": notifications, "timezone": self.timezone or "UTC"}


class Task(Base):
    __tablename__ = "tasks"
    __table_args__ = (
        Index("ix_tasks_user_status", "user_id", "status"),
        Index("ix_tasks_user_due", "user_id", "due_at"),
        Index("ix_tasks_user_priority", "user_id", "priority"),
        Index("ix_tasks_user_category", "user_id", "category"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"))

    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[TaskStatus] = mapped_column(_enum(TaskStatus), default=TaskStatus.PENDING)
    priority: Mapped[TaskPriority] = mapped_column(_enum(TaskPriority), default=TaskPriority.MEDIUM)
    category: Mapped[TaskCategory] = mapped_column(_enum(TaskCategory), default=TaskCategory.PERSONAL)

    due_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    reminder_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    estimated_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)  # minutes
    actual_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)  # minutes
    tags: Mapped[list] = mapped_column(JSON, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    user: Mapped["User"] = relationship(back_populates="tasks")
    subtasks: Mapped[list["Subtask"]] = relationship(
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="Subtask.position",
        collection_class=ordering_list("position"),
    )

    @validates("status")
    def _sync_completed_at(self, key, value):
        # completed_at is set iff status is completed
        if value == TaskStatus.COMPLETED:
            if self.completed_at is None:
                self.completed_at = utcnow()
        else:
            self.completed_at = None
        return value

    @property
    def completion_percentage(self) -> int:
        if not self.subtasks:
            return 100 if self.status == TaskStatus.COMPLETED else 0
        done = sum(1 for s in self.subtasks if s.completed)
        return round(done / len(self.subtasks) * 100)

    @property
    def is_overdue(self) -> bool:
        if not self.due_at or self.status == TaskStatus.COMPLETED:
            return False
        return utcnow() > self.due_at


class Subtask(Base):
    __tablename__ = "subtasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    task_id: Mapped[str] = mapped_column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), index=True)
    position: Mapped[int] = mapped_column(Integer, default=0)
    title: Mapped[str] = mapped_column(String(200))
    completed: Mapped[bool] = mapped_column(Boolean, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    task: Mapped["Task"] = relationship(back_populates="subtasks")


class Note(Base):
    __tablename__ = "notes"
    __table_args__ = (
        Index("ix_notes_user_archived", "user_id", "is_archived"),
        Index("ix_notes_user_pinned", "user_id", "is_pinned"),
        Index("ix_notes_user_category", "user_id", "category"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"))

    title: Mapped[str] = mapped_column(String(200))
    content: Mapped[str] = mapped_column(Text, default="")
    category: Mapped[NoteCategory] = mapped_column(_enum(NoteCategory), default=NoteCategory.PERSONAL)
    tags: Mapped[list] = mapped_column(JSON, default=list)
    is_pinned: Mapped[bool] = mapped_column(Boolean, default=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False)
    color: Mapped[str] = mapped_column(String(20), default="default")
    attachments: Mapped[list] = mapped_column(JSON, default=list)

    version: Mapped[int] = mapped_column(Integer, default=1)
    last_edited_by: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    user: Mapped["User"] = relationship(back_populates="notes", foreign_keys=[user_id])
    editor: Mapped["User | None"] = relationship(foreign_keys=[last_edited_by])
    reminders: Mapped[list["NoteReminder"]] = relationship(
        back_populates="note", cascade="all, delete-orphan", order_by="NoteReminder.remind_at"
    )
    collaborators: Mapped[list["NoteCollaborator"]] = relationship(
        back_populates="note", cascade="all, delete-orphan", order_by="NoteCollaborator.added_at"
    )

    @property
    def word_count(self) -> int:
        return len((self.content or "").split())

    @property
    def character_count(self) -> int:
        return len(self.content or "")

    @property
    def reading_time(self) -> int:
        # minutes at 200 words per minute
        return math.ceil(self.word_count / 200)


@event.listens_for(Note, "before_update")
def _bump_note_version(mapper, connection, target: Note):
    state = inspect(target)
    if state.attrs.title.history.has_changes() or state.attrs.content.history.has_changes():
        target.version = (target.version or 1) + 1


class NoteReminder(Base):
    __tablename__ = "note_reminders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    note_id: Mapped[str] = mapped_column(String(36), ForeignKey("notes.id", ondelete="CASCADE"), index=True)
    remind_at: Mapped[datetime] = mapped_column(DateTime)
    message: Mapped[str] = mapped_column(String(200), default="")
    is_triggered: Mapped[bool] = mapped_column(Boolean, default=False)

    note: Mapped["Note"] = relationship(back_populates="reminders")


class NoteCollaborator(Base):
    __tablename__ = "note_collaborators"
    __table_args__ = (UniqueConstraint("note_id", "user_id", name="uq_note_collaborator"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    note_id: Mapped[str] = mapped_column(String(36), ForeignKey("notes.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True)
    permission: Mapped[Permission] = mapped_column(_enum(Permission), default=Permission.READ)
    added_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    note: Mapped["Note"] = relationship(back_populates="collaborators")
    user: Mapped["User"] = relationship()


class ChatMessage(Base):
    __tablename__ = "chat_messages"
    __table_args__ = (
        Index("ix_chat_user_session_created", "user_id", "session_id", "created_at"),
        Index("ix_chat_user_created", "user_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"))
    session_id: Mapped[str] = mapped_column(String(36), index=True)
    role: Mapped[ChatRole] = mapped_column(_enum(ChatRole))
    content: Mapped[str] = mapped_column(Text)
    context: Mapped[ChatContext] = mapped_column(_enum(ChatContext), default=ChatContext.GENERAL)

    model: Mapped[str] = mapped_column(String(64), default="gpt-3.5-turbo")
    prompt_tokens: Mapped[int] = mapped_column(Integer, default=0)
    completion_tokens: Mapped[int] = mapped_column(Integer, default=0)
    total_tokens: Mapped[int] = mapped_column(Integer, default=0)
    response_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    temperature: Mapped[float] = mapped_column(Float, default=0.7)
    max_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)

    attachments: Mapped[list] = mapped_column(JSON, default=list)
    is_edited: Mapped[bool] = mapped_column(Boolean, default=False)
    edit_history: Mapped[list] = mapped_column(JSON, default=list)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    reactions: Mapped[list["ChatReaction"]] = relationship(
        back_populates="message", cascade="all, delete-orphan", order_by="ChatReaction.created_at"
    )


class ChatReaction(Base):
    __tablename__ = "chat_reactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    message_id: Mapped[str] = mapped_column(String(36), ForeignKey("chat_messages.id", ondelete="CASCADE"), index=True)
    type: Mapped[ReactionType] = mapped_column(_enum(ReactionType))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    message: Mapped["ChatMessage"] = relationship(back_populates="reactions")
