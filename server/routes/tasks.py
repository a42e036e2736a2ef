import logging
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from server.schemas import TaskCreate, TaskUpdate, TaskEnvelope, TaskListEnvelope
from server.models import Task, User
from server.dependencies import get_db, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter()

def _get_owned_task(db: Session, task_id: int, user: User) -> Task:
    task = db.query(Task).filter(
        Task.id == task_id,
        Task.user_id == user.id  # Owner isolation
    ).first()
    if not task:
        raise HTTPException(status_code=404, detail="Task not found or unauthorized")
    return task

# =========================================================
# TASK ENDPOINTS
# =========================================================
@router.get("", response_model=TaskListEnvelope)
def get_tasks(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    tasks = (
        db.query(Task)
        .filter(Task.user_id == current_user.id)
        .order_by(Task.created_at.desc(), Task.id.desc())
        .all()
    )
    return {"message": "Tasks retrieved successfully", "tasks": tasks}

@router.post("", response_model=TaskEnvelope, status_code=status.HTTP_201_CREATED)
def create_task(
    task_data: TaskCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    task = Task(**task_data.model_dump(exclude_none=True), user_id=current_user.id)
    db.add(task)
    db.commit()
    db.refresh(task)
    logger.info(f"Created task {task.id} for user {current_user.id}")
    return {"message": "Task created successfully", "task": task}

@router.get("/{task_id}", response_model=TaskEnvelope)
def get_task(
    task_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    task = _get_owned_task(db, task_id, current_user)
    return {"message": "Task retrieved successfully", "task": task}

@router.put("/{task_id}", response_model=TaskEnvelope)
def update_task(
    task_id: int,
    task_data: TaskUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    task = _get_owned_task(db, task_id, current_user)

    # Only provided fields are applied; explicit nulls clear due_date/reminder_time
    update_data = task_data.model_dump(exclude_unset=True)
    for key in ("title", "status", "priority"):
        if key in update_data and update_data[key] is None:
            raise HTTPException(status_code=400, detail=f"{key} cannot be null")

    for key, value in update_data.items():
        setattr(task, key, value)

    task.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(task)
    return {"message": "Task updated successfully", "task": task}

@router.delete("/{task_id}", response_model=TaskEnvelope)
def delete_task(
    task_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    task = _get_owned_task(db, task_id, current_user)
    deleted = TaskEnvelope.model_validate(
        {"message": "Task deleted successfully", "task": task}, from_attributes=True
    )

    db.delete(task)
    db.commit()
    logger.info(f"Deleted task {task_id} for user {current_user.id}")
    return deleted
