import logging
import re
from collections import Counter
from typing import Annotated, Any, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import AfterValidator, BaseModel, Field
from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session, selectinload

from ..auth_dep import get_current_user
from ..db import get_db
from ..errors import NotFound, SubResourceNotFound, ValidationFailed
from ..models import Note, NoteCategory, NoteCollaborator, NoteReminder, Permission, User
from ..query import PageParams, get_owned, owned, page_params, paginate, ranked_search, sort_clause
from ..schemas import SortOrder, Tag, TagList, Title, UtcDatetime
from ..utils import to_iso, utcnow

log = logging.getLogger("studyhub.notes")

router = APIRouter(prefix="/api/notes", tags=["notes"])

PALETTE = {"default", "red", "orange", "yellow", "green", "blue", "purple", "pink"}
HEX_COLOR_RE = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")

SORT_COLUMNS = {
    "createdAt": Note.created_at,
    "updatedAt": Note.updated_at,
    "title": Note.title,
    "category": Note.category,
}

_LOAD = (
    selectinload(Note.editor),
    selectinload(Note.reminders),
    selectinload(Note.collaborators).selectinload(NoteCollaborator.user),
)


def _check_color(v: str) -> str:
    if v not in PALETTE and not HEX_COLOR_RE.match(v):
        raise ValueError("Color must be a palette name or a hex code")
    return v

Color = Annotated[str, AfterValidator(_check_color)]


class NoteCreate(BaseModel):
    title: Title
    content: str = Field(default="", max_length=50000)
    category: Optional[NoteCategory] = None
    tags: Optional[TagList] = None
    isPinned: Optional[bool] = None
    color: Optional[Color] = None
    attachments: Optional[list[dict[str, Any]]] = None

class NoteUpdate(NoteCreate):
    title: Optional[Title] = None
    content: Optional[str] = Field(default=None, max_length=50000)
    isArchived: Optional[bool] = None

class TagIn(BaseModel):
    tag: Tag

class ReminderIn(BaseModel):
    date: UtcDatetime
    message: str = Field(default="", max_length=200)

class CollaboratorIn(BaseModel):
    username: str = Field(min_length=1, max_length=30)
    permission: Permission = Permission.READ


def _editor_to_dto(u: Optional[User]):
    if u is None:
        return None
    return {"id": u.id, "username": u.username, "firstName": u.first_name, "lastName": u.last_name}

def note_to_dto(n: Note) -> dict:
    return {
        "id": n.id,
        "title": n.title,
        "content": n.content,
        "category": n.category.value,
        "tags": list(n.tags or []),
        "isPinned": n.is_pinned,
        "isArchived": n.is_archived,
        "color": n.color,
        "attachments": list(n.attachments or []),
        "reminders": [
            {"id": r.id, "date": to_iso(r.remind_at), "message": r.message, "isTriggered": r.is_triggered}
            for r in n.reminders
        ],
        "collaborators": [
            {
                "id": c.id,
                "user": _editor_to_dto(c.user),
                "permission": c.permission.value,
                "addedAt": to_iso(c.added_at),
            }
            for c in n.collaborators
        ],
        "version": n.version,
        "lastEditedBy": _editor_to_dto(n.editor),
        "wordCount": n.word_count,
        "characterCount": n.character_count,
        "readingTime": n.reading_time,
        "createdAt": to_iso(n.created_at),
        "updatedAt": to_iso(n.updated_at),
    }

def _load(db: Session, note_id: str, user: User) -> Note:
    return get_owned(db, Note, note_id, user.id, "note")

def _load_editable(db: Session, note_id: str, user: User) -> Note:
    """Load a note the caller owns or holds a ``write`` grant on."""
    can_write = Note.collaborators.any(
        and_(NoteCollaborator.user_id == user.id, NoteCollaborator.permission == Permission.WRITE)
    )
    n = db.query(Note).filter(Note.id == note_id, or_(Note.user_id == user.id, can_write)).first()
    if n is None:
        raise NotFound("note not found", code="NOTE_NOT_FOUND")
    return n

def _saved(db: Session, n: Note) -> dict:
    db.commit()
    db.refresh(n)
    return note_to_dto(n)

def _live(db: Session, user: User):
    return owned(db, Note, user.id).filter(Note.is_archived.is_(False))


@router.post("", status_code=201)
def create_note(payload: NoteCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    n = Note(
        user_id=user.id,
        title=payload.title,
        content=payload.content,
        category=payload.category or NoteCategory.PERSONAL,
        tags=payload.tags or [],
        is_pinned=bool(payload.isPinned),
        color=payload.color or "default",
        attachments=payload.attachments or [],
        last_edited_by=user.id,
    )
    db.add(n)
    return {"message": "Note created successfully", "note": _saved(db, n)}

@router.get("")
def list_notes(
    category: Optional[NoteCategory] = Query(default=None),
    archived: bool = Query(default=False),
    pinned: Optional[bool] = Query(default=None),
    search: Optional[str] = Query(default=None, max_length=100),
    sortBy: Literal["createdAt", "updatedAt", "title", "category"] = Query(default="updatedAt"),
    sortOrder: SortOrder = Query(default="desc"),
    params: PageParams = Depends(page_params(20, 100)),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if search and search.strip():
        text = search.strip()
        page = ranked_search(
            db, _live(db, user).options(*_LOAD), Note, text, params,
            title_col=Note.title, content_col=Note.content, tags_col=Note.tags,
        )
        return {
            "notes": [note_to_dto(n) for n in page.items],
            "pagination": page.pagination(),
            "searchQuery": text,
        }

    q = owned(db, Note, user.id).filter(Note.is_archived.is_(archived))
    if category:
        q = q.filter(Note.category == category)
    if pinned is not None:
        q = q.filter(Note.is_pinned.is_(pinned))

    order = [sort_clause(SORT_COLUMNS[sortBy], sortOrder), sort_clause(Note.id, sortOrder)]
    if not archived:
        order.insert(0, Note.is_pinned.desc())

    page = paginate(q.options(*_LOAD).order_by(*order), params)
    return {"notes": [note_to_dto(n) for n in page.items], "pagination": page.pagination()}

@router.get("/pinned")
def pinned_notes(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    items = (
        _live(db, user)
        .filter(Note.is_pinned.is_(True))
        .options(*_LOAD)
        .order_by(Note.updated_at.desc())
        .all()
    )
    return {"notes": [note_to_dto(n) for n in items], "count": len(items)}

@router.get("/archived")
def archived_notes(
    params: PageParams = Depends(page_params(20, 100)),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    q = (
        owned(db, Note, user.id)
        .filter(Note.is_archived.is_(True))
        .options(*_LOAD)
        .order_by(Note.updated_at.desc(), Note.id.desc())
    )
    page = paginate(q, params)
    return {"notes": [note_to_dto(n) for n in page.items], "pagination": page.pagination()}

@router.get("/tags")
def note_tags(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    counts = Counter()
    for (tags,) in _live(db, user).with_entities(Note.tags):
        counts.update(set(tags or []))
    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    return {"tags": [{"name": name, "count": n} for name, n in ranked]}

@router.get("/stats")
def note_stats(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    total = archived = pinned = words = chars = 0
    for is_archived, is_pinned, content in owned(db, Note, user.id).with_entities(
        Note.is_archived, Note.is_pinned, Note.content
    ):
        total += 1
        archived += int(bool(is_archived))
        pinned += int(bool(is_pinned))
        words += len((content or "").split())
        chars += len(content or "")

    by_category = (
        db.query(Note.category, func.count(Note.id))
        .filter(Note.user_id == user.id, Note.is_archived.is_(False))
        .group_by(Note.category)
        .order_by(func.count(Note.id).desc())
        .all()
    )
    return {
        "overview": {
            "total": total,
            "archived": archived,
            "pinned": pinned,
            "totalWords": words,
            "totalCharacters": chars,
        },
        "byCategory": [{"category": c.value, "count": n} for c, n in by_category],
    }

@router.get("/shared")
def shared_notes(
    params: PageParams = Depends(page_params(20, 100)),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    q = (
        db.query(Note, NoteCollaborator.permission)
        .join(NoteCollaborator, NoteCollaborator.note_id == Note.id)
        .filter(NoteCollaborator.user_id == user.id)
        .options(*_LOAD)
        .order_by(Note.updated_at.desc(), Note.id.desc())
    )
    page = paginate(q, params)
    notes = [{**note_to_dto(n), "permission": perm.value} for n, perm in page.items]
    return {"notes": notes, "pagination": page.pagination()}

@router.get("/category/{category}")
def notes_by_category(category: NoteCategory, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    items = (
        _live(db, user)
        .filter(Note.category == category)
        .options(*_LOAD)
        .order_by(Note.is_pinned.desc(), Note.updated_at.desc())
        .all()
    )
    return {"notes": [note_to_dto(n) for n in items], "category": category.value, "count": len(items)}

@router.get("/{note_id}")
def get_note(note_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"note": note_to_dto(_load(db, note_id, user))}

@router.put("/{note_id}")
def update_note(note_id: str, payload: NoteUpdate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    n = _load_editable(db, note_id, user)
    if n.user_id != user.id:
        owner_only = [f for f in ("isPinned", "isArchived") if getattr(payload, f) is not None]
        if owner_only:
            raise ValidationFailed(
                "Only the owner can pin or archive a note",
                details=[{"field": f, "message": "Owner only"} for f in owner_only],
            )

    if payload.title is not None:
        n.title = payload.title
    if payload.content is not None:
        n.content = payload.content
    if payload.category is not None:
        n.category = payload.category
    if payload.tags is not None:
        n.tags = payload.tags
    if payload.isPinned is not None:
        n.is_pinned = payload.isPinned
    if payload.isArchived is not None:
        n.is_archived = payload.isArchived
    if payload.color is not None:
        n.color = payload.color
    if payload.attachments is not None:
        n.attachments = payload.attachments
    n.last_edited_by = user.id

    return {"message": "Note updated successfully", "note": _saved(db, n)}

@router.delete("/{note_id}")
def delete_note(note_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    n = _load(db, note_id, user)
    db.delete(n)
    db.commit()
    return {"message": "Note deleted successfully"}

@router.patch("/{note_id}/pin")
def toggle_pin(note_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    n = _load(db, note_id, user)
    n.is_pinned = not n.is_pinned
    state = "pinned" if n.is_pinned else "unpinned"
    return {"message": f"Note {state} successfully", "note": _saved(db, n)}

@router.patch("/{note_id}/archive")
def toggle_archive(note_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    n = _load(db, note_id, user)
    n.is_archived = not n.is_archived
    state = "archived" if n.is_archived else "unarchived"
    return {"message": f"Note {state} successfully", "note": _saved(db, n)}

@router.post("/{note_id}/tags")
def add_tag(note_id: str, payload: TagIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    n = _load(db, note_id, user)
    tag = payload.tag.lower()
    if tag not in (n.tags or []):
        # reassign so the JSON column is flagged dirty
        n.tags = [*(n.tags or []), tag]
    return {"message": "Tag added successfully", "note": _saved(db, n)}

@router.delete("/{note_id}/tags/{tag}")
def remove_tag(note_id: str, tag: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    n = _load(db, note_id, user)
    current = list(n.tags or [])
    wanted = tag.strip()
    match = wanted if wanted in current else wanted.lower()
    if match not in current:
        raise SubResourceNotFound("Tag not found", code="TAG_NOT_FOUND")
    n.tags = [t for t in current if t != match]
    return {"message": "Tag removed successfully", "note": _saved(db, n)}

@router.post("/{note_id}/reminders")
def add_reminder(note_id: str, payload: ReminderIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    if payload.date <= utcnow():
        raise ValidationFailed("Reminder date must be in the future", code="INVALID_DATE")
    n = _load(db, note_id, user)
    n.reminders.append(NoteReminder(remind_at=payload.date, message=payload.message))
    return {"message": "Reminder added successfully", "note": _saved(db, n)}

@router.delete("/{note_id}/reminders/{reminder_id}")
def remove_reminder(note_id: str, reminder_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    n = _load(db, note_id, user)
    entry = next((r for r in n.reminders if r.id == reminder_id), None)
    if entry is None:
        raise SubResourceNotFound("Reminder not found", code="REMINDER_NOT_FOUND")
    n.reminders.remove(entry)
    return {"message": "Reminder removed successfully", "note": _saved(db, n)}

@router.post("/{note_id}/collaborators")
def add_collaborator(
    note_id: str,
    payload: CollaboratorIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    n = _load(db, note_id, user)
    other = db.query(User).filter(User.username == payload.username, User.is_active.is_(True)).first()
    if other is None:
        raise ValidationFailed("User not found", details=[{"field": "username", "message": "Unknown username"}])
    if other.id == user.id:
        raise ValidationFailed(
            "The note owner cannot be a collaborator",
            details=[{"field": "username", "message": "Cannot add yourself"}],
        )

    existing = next((c for c in n.collaborators if c.user_id == other.id), None)
    if existing is not None:
        existing.permission = payload.permission
    else:
        n.collaborators.append(NoteCollaborator(user_id=other.id, permission=payload.permission))
    log.info("Note %s shared with user %s (%s)", n.id, other.id, payload.permission.value)
    return {"message": "Collaborator added successfully", "note": _saved(db, n)}

@router.delete("/{note_id}/collaborators/{collaborator_id}")
def remove_collaborator(
    note_id: str,
    collaborator_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    n = _load(db, note_id, user)
    entry = next((c for c in n.collaborators if c.id == collaborator_id), None)
    if entry is None:
        raise SubResourceNotFound("Collaborator not found", code="COLLABORATOR_NOT_FOUND")
    n.collaborators.remove(entry)
    return {"message": "Collaborator removed successfully", "note": _saved(db, n)}
