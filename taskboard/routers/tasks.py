import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from sqlalchemy import literal, or_
from sqlalchemy.orm import Session

from ..ai import TaskContext, categorize_task, generate_task_suggestions
from ..database import fold, get_db
from ..models import Task as TaskModel, TaskPriority, TaskStatus, User
from ..models.task import utcnow
from ..schemas.task import (
    CategorizeRequest,
    MessageResponse,
    TaskInput,
    TaskListResponse,
    TaskMessageResponse,
    TaskResponse,
)
from .auth import get_current_user

router = APIRouter()

logger = logging.getLogger(__name__)

SUGGESTION_CONTEXT_LIMIT = 20


def _enum_or_none(enum_cls, value: Optional[str]):
    if not value:
        return None
    try:
        return enum_cls(value)
    except ValueError:
        return None


def _like_pattern(search: str) -> str:
    escaped = search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _get_owned_task(db: Session, task_id: str, current_user: User) -> TaskModel:
    """Owner-scoped lookup; a foreign task is reported exactly like a missing one."""
    task = db.query(TaskModel).filter(TaskModel.id == task_id, TaskModel.user_id == current_user.id).first()
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


def _apply_input(task: TaskModel, data: TaskInput) -> None:
    task.title = data.title
    task.description = data.description
    task.status = data.status
    task.priority = data.priority
    task.due_date = data.due_date
    task.tags = list(data.tags)
    task.ai_suggested = data.ai_suggested


@router.get("/tasks", response_model=TaskListResponse)
def list_tasks(
    status: Optional[str] = None,
    priority: Optional[str] = None,
    search: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """List the caller's tasks, newest first.

    Unknown status/priority values are ignored rather than rejected. `search`
    is a case-insensitive substring match over title and description.
    """
    query = db.query(TaskModel).filter(TaskModel.user_id == current_user.id)

    status_filter = _enum_or_none(TaskStatus, status)
    if status_filter is not None:
        query = query.filter(TaskModel.status == status_filter)

    priority_filter = _enum_or_none(TaskPriority, priority)
    if priority_filter is not None:
        query = query.filter(TaskModel.priority == priority_filter)

    if search:
        pattern = _like_pattern(search)
        query = query.filter(
            or_(
                fold(TaskModel.title).like(fold(literal(pattern)), escape="\\"),
                fold(TaskModel.description).like(fold(literal(pattern)), escape="\\"),
            )
        )

    tasks = query.order_by(TaskModel.created_at.desc()).all()
    return {"tasks": tasks}


@router.post("/tasks", response_model=TaskMessageResponse, status_code=status.HTTP_201_CREATED)
def create_task(
    task: TaskInput,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Create a new task owned by the caller."""
    db_task = TaskModel(**task.model_dump(), user_id=current_user.id)
    db.add(db_task)
    db.commit()
    db.refresh(db_task)

    logger.info("task_created", extra={"task_id": db_task.id, "ai_suggested": db_task.ai_suggested})
    return {"task": db_task, "message": "Task created successfully"}


@router.get("/tasks/ai/suggestions")
def get_ai_suggestions(
    context: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Suggest new tasks from the caller's existing ones."""
    existing = (
        db.query(TaskModel)
        .filter(TaskModel.user_id == current_user.id)
        .order_by(TaskModel.created_at.desc())
        .limit(SUGGESTION_CONTEXT_LIMIT)
        .all()
    )
    contexts = [
        TaskContext(title=task.title, description=task.description or "", tags=list(task.tags or []))
        for task in existing
    ]

    suggestions = generate_task_suggestions(contexts, user_context=context)
    return {"suggestions": [suggestion.model_dump(mode="json") for suggestion in suggestions]}


@router.post("/tasks/ai/categorize")
def categorize(
    payload: CategorizeRequest,
    current_user: User = Depends(get_current_user),
):
    """Propose tags and a priority for a task that has not been saved yet."""
    result = categorize_task(payload.title, payload.description)
    return {"tags": result["tags"], "priority": result["priority"].value}


@router.get("/tasks/{task_id}", response_model=TaskResponse)
def get_task(
    task_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get a specific task by ID."""
    return {"task": _get_owned_task(db, task_id, current_user)}


def _save_update(db: Session, task: TaskModel, data: TaskInput) -> TaskModel:
    _apply_input(task, data)
    task.updated_at = utcnow()

    db.commit()
    db.refresh(task)
    return task


@router.put("/tasks/{task_id}", response_model=TaskMessageResponse)
async def update_task(
    request: Request,
    task_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Replace a task's fields.

    The body is read only after the owner-scoped lookup, so an unknown id is
    a 404 whatever the payload looks like, malformed JSON included.
    """
    task = await run_in_threadpool(_get_owned_task, db, task_id, current_user)

    raw_body = await request.body()
    try:
        payload = json.loads(raw_body) if raw_body else None
    except ValueError:
        raise RequestValidationError(
            [{"type": "json_invalid", "loc": ("body",), "msg": "JSON decode error", "input": {}}]
        )

    try:
        data = TaskInput.model_validate(payload)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors(include_url=False))

    task = await run_in_threadpool(_save_update, db, task, data)
    return {"task": task, "message": "Task updated successfully"}


@router.delete("/tasks/{task_id}", response_model=MessageResponse)
def delete_task(
    task_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Delete a specific task."""
    task = _get_owned_task(db, task_id, current_user)

    db.delete(task)
    db.commit()
    logger.info("task_deleted", extra={"task_id": task_id})
    return {"message": "Task deleted successfully"}
