import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import and_, case, func
from sqlalchemy.orm import Session, selectinload

from ..auth_dep import get_current_user
from ..db import get_db
from ..errors import SubResourceNotFound
from ..models import Subtask, Task, TaskCategory, TaskPriority, TaskStatus, User
from ..query import PageParams, get_owned, owned, page_params, paginate, sort_clause, substring_filter
from ..schemas import SortOrder, TagList, Title, UtcDatetime
from ..utils import to_iso, utcnow

log = logging.getLogger("studyhub.tasks")

router = APIRouter(prefix="/api/tasks", tags=["tasks"])

SORT_COLUMNS = {
    "createdAt": Task.created_at,
    "updatedAt": Task.updated_at,
    "dueDate": Task.due_at,
    "title": Task.title,
}

# severity order, not alphabetical
PRIORITY_RANK = case(
    (Task.priority == TaskPriority.LOW, 1),
    (Task.priority == TaskPriority.MEDIUM, 2),
    (Task.priority == TaskPriority.HIGH, 3),
    (Task.priority == TaskPriority.URGENT, 4),
    else_=0,
)


class TaskCreate(BaseModel):
    title: Title
    description: Optional[str] = Field(default=None, max_length=2000)
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    category: Optional[TaskCategory] = None
    dueDate: Optional[UtcDatetime] = None
    reminderDate: Optional[UtcDatetime] = None
    estimatedDuration: Optional[int] = Field(default=None, ge=1, le=10080)
    tags: Optional[TagList] = None

class TaskUpdate(TaskCreate):
    title: Optional[Title] = None
    actualDuration: Optional[int] = Field(default=None, ge=1)

class CompleteIn(BaseModel):
    actualDuration: Optional[int] = Field(default=None, ge=1)

class SubtaskCreate(BaseModel):
    title: Title

class SubtaskUpdate(BaseModel):
    title: Optional[Title] = None
    completed: Optional[bool] = None


def subtask_to_dto(s: Subtask) -> dict:
    return {
        "id": s.id,
        "title": s.title,
        "completed": s.completed,
        "completedAt": to_iso(s.completed_at),
    }

def task_to_dto(t: Task) -> dict:
    return {
        "id": t.id,
        "title": t.title,
        "description": t.description,
        "status": t.status.value,
        "priority": t.priority.value,
        "category": t.category.value,
        "dueDate": to_iso(t.due_at),
        "reminderDate": to_iso(t.reminder_at),
        "completedAt": to_iso(t.completed_at),
        "estimatedDuration": t.estimated_duration,
        "actualDuration": t.actual_duration,
        "tags": list(t.tags or []),
        "subtasks": [subtask_to_dto(s) for s in t.subtasks],
        "completionPercentage": t.completion_percentage,
        "isOverdue": t.is_overdue,
        "createdAt": to_iso(t.created_at),
        "updatedAt": to_iso(t.updated_at),
    }

def _load(db: Session, task_id: str, user: User) -> Task:
    return get_owned(db, Task, task_id, user.id, "task")

def _find_subtask(t: Task, subtask_id: str) -> Subtask:
    for s in t.subtasks:
        if s.id == subtask_id:
            return s
    raise SubResourceNotFound("Subtask not found", code="SUBTASK_NOT_FOUND")

def _completed_count():
    return func.coalesce(func.sum(case((Task.status == TaskStatus.COMPLETED, 1), else_=0)), 0)


@router.post("", status_code=201)
def create_task(payload: TaskCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    t = Task(
        user_id=user.id,
        title=payload.title,
        description=payload.description,
        priority=payload.priority or TaskPriority.MEDIUM,
        category=payload.category or TaskCategory.PERSONAL,
        due_at=payload.dueDate,
        reminder_at=payload.reminderDate,
        estimated_duration=payload.estimatedDuration,
        tags=payload.tags or [],
    )
    # through the validator so completed_at follows
    t.status = payload.status or TaskStatus.PENDING
    db.add(t)
    db.commit()
    db.refresh(t)
    return {"message": "Task created successfully", "task": task_to_dto(t)}

@router.get("")
def list_tasks(
    status: Optional[TaskStatus] = Query(default=None),
    priority: Optional[TaskPriority] = Query(default=None),
    category: Optional[TaskCategory] = Query(default=None),
    search: Optional[str] = Query(default=None, min_length=1, max_length=100),
    sortBy: Literal["createdAt", "updatedAt", "dueDate", "priority", "title"] = Query(default="createdAt"),
    sortOrder: SortOrder = Query(default="desc"),
    params: PageParams = Depends(page_params(20, 100)),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    q = owned(db, Task, user.id)
    if status:
        q = q.filter(Task.status == status)
    if priority:
        q = q.filter(Task.priority == priority)
    if category:
        q = q.filter(Task.category == category)
    if search and search.strip():
        q = q.filter(substring_filter(
            search.strip(), Task.title, Task.description,
            json_columns=[Task.tags], dialect=db.get_bind().dialect.name,
        ))

    column = PRIORITY_RANK if sortBy == "priority" else SORT_COLUMNS[sortBy]
    q = q.options(selectinload(Task.subtasks)).order_by(sort_clause(column, sortOrder), sort_clause(Task.id, sortOrder))

    page = paginate(q, params)
    return {"tasks": [task_to_dto(t) for t in page.items], "pagination": page.pagination()}

@router.get("/overdue")
def overdue_tasks(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    items = (
        owned(db, Task, user.id)
        .filter(
            Task.due_at.is_not(None),
            Task.due_at < utcnow(),
            Task.status != TaskStatus.COMPLETED,
        )
        .options(selectinload(Task.subtasks))
        .order_by(Task.due_at.asc())
        .all()
    )
    return {"tasks": [task_to_dto(t) for t in items], "count": len(items)}

@router.get("/stats")
def task_stats(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    def status_count(s: TaskStatus):
        return func.coalesce(func.sum(case((Task.status == s, 1), else_=0)), 0)

    overdue = func.coalesce(func.sum(case(
        (and_(Task.status != TaskStatus.COMPLETED, Task.due_at.is_not(None), Task.due_at < utcnow()), 1),
        else_=0,
    )), 0)

    row = (
        db.query(
            func.count(Task.id),
            status_count(TaskStatus.COMPLETED),
            status_count(TaskStatus.PENDING),
            status_count(TaskStatus.IN_PROGRESS),
            status_count(TaskStatus.CANCELLED),
            overdue,
        )
        .filter(Task.user_id == user.id)
        .one()
    )
    total, completed, pending, in_progress, cancelled, overdue_n = row

    by_category = (
        db.query(Task.category, func.count(Task.id), _completed_count())
        .filter(Task.user_id == user.id)
        .group_by(Task.category)
        .order_by(func.count(Task.id).desc())
        .all()
    )
    by_priority = (
        db.query(Task.priority, func.count(Task.id), _completed_count())
        .filter(Task.user_id == user.id)
        .group_by(Task.priority)
        .order_by(func.count(Task.id).desc())
        .all()
    )

    return {
        "overview": {
            "total": total,
            "completed": int(completed),
            "pending": int(pending),
            "inProgress": int(in_progress),
            "cancelled": int(cancelled),
            "overdue": int(overdue_n),
        },
        "byCategory": [
            {"category": c.value, "count": n, "completed": int(done)} for c, n, done in by_category
        ],
        "byPriority": [
            {"priority": p.value, "count": n, "completed": int(done)} for p, n, done in by_priority
        ],
    }

@router.get("/{task_id}")
def get_task(task_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"task": task_to_dto(_load(db, task_id, user))}

@router.put("/{task_id}")
def update_task(task_id: str, payload: TaskUpdate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    t = _load(db, task_id, user)
    sent = payload.model_fields_set

    if payload.title is not None:
        t.title = payload.title
    if "description" in sent:
        t.description = payload.description
    if payload.status is not None:
        t.status = payload.status
    if payload.priority is not None:
        t.priority = payload.priority
    if payload.category is not None:
        t.category = payload.category
    if "dueDate" in sent:
        t.due_at = payload.dueDate
    if "reminderDate" in sent:
        t.reminder_at = payload.reminderDate
    if "estimatedDuration" in sent:
        t.estimated_duration = payload.estimatedDuration
    if "actualDuration" in sent:
        t.actual_duration = payload.actualDuration
    if payload.tags is not None:
        t.tags = payload.tags

    db.commit()
    db.refresh(t)
    return {"message": "Task updated successfully", "task": task_to_dto(t)}

@router.delete("/{task_id}")
def delete_task(task_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    t = _load(db, task_id, user)
    db.delete(t)
    db.commit()
    return {"message": "Task deleted successfully"}

@router.patch("/{task_id}/complete")
def complete_task(
    task_id: str,
    payload: Optional[CompleteIn] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    t = _load(db, task_id, user)
    t.status = TaskStatus.COMPLETED
    if payload is not None and payload.actualDuration is not None:
        t.actual_duration = payload.actualDuration
    db.commit()
    db.refresh(t)
    return {"message": "Task marked as completed", "task": task_to_dto(t)}

@router.post("/{task_id}/subtasks")
def add_subtask(task_id: str, payload: SubtaskCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    t = _load(db, task_id, user)
    t.subtasks.append(Subtask(title=payload.title))
    t.updated_at = utcnow()
    db.commit()
    db.refresh(t)
    return {"message": "Subtask added successfully", "task": task_to_dto(t)}

@router.put("/{task_id}/subtasks/{subtask_id}")
def update_subtask(
    task_id: str,
    subtask_id: str,
    payload: SubtaskUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    t = _load(db, task_id, user)
    s = _find_subtask(t, subtask_id)

    if payload.title is not None:
        s.title = payload.title
    if payload.completed is not None and payload.completed != s.completed:
        s.completed = payload.completed
        s.completed_at = utcnow() if payload.completed else None

    t.updated_at = utcnow()
    db.commit()
    db.refresh(t)
    return {"message": "Subtask updated successfully", "task": task_to_dto(t)}

@router.delete("/{task_id}/subtasks/{subtask_id}")
def delete_subtask(task_id: str, subtask_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    t = _load(db, task_id, user)
    s = _find_subtask(t, subtask_id)
    t.subtasks.remove(s)
    t.subtasks.reorder()
    t.updated_at = utcnow()
    db.commit()
    db.refresh(t)
    return {"message": "Subtask deleted successfully", "task": task_to_dto(t)}
