"""
Tasks API Router

CRUD and search over the logged-in user's tasks. Every route needs a valid
session and a verified email address.
"""

from fastapi import APIRouter, Depends, status

from api.dependencies import get_task_store, verified_session
from api.guards import AuthContext
from models.task import DeleteResult, TaskCreate, TaskInDB, TaskPage, TaskSearchOptions, TaskUpdate
from services import task_service


router = APIRouter(
    prefix="/tasks",
    tags=["Tasks"],
    dependencies=[Depends(verified_session)],
)


@router.post("", response_model=TaskInDB, status_code=status.HTTP_201_CREATED)
async def create_task(
    task_data: TaskCreate,
    context: AuthContext = Depends(verified_session),
    task_store=Depends(get_task_store),
):
    """Create a task owned by the caller."""
    return await task_service.create_task(task_store, context.user.id, task_data)


@router.post("/search", response_model=TaskPage)
async def search_tasks(
    search: TaskSearchOptions,
    context: AuthContext = Depends(verified_session),
    task_store=Depends(get_task_store),
):
    """Return a filtered, sorted page of the caller's tasks."""
    return await task_service.search_tasks(task_store, context.user.id, search)


@router.get("/{task_id}", response_model=TaskInDB)
async def get_task(
    task_id: str,
    context: AuthContext = Depends(verified_session),
    task_store=Depends(get_task_store),
):
    return await task_service.get_task(task_store, context.user.id, task_id)


@router.patch("/{task_id}", response_model=TaskInDB)
async def update_task(
    task_id: str,
    changes: TaskUpdate,
    context: AuthContext = Depends(verified_session),
    task_store=Depends(get_task_store),
):
    return await task_service.update_task(task_store, context.user.id, task_id, changes)


@router.delete("/{task_id}", response_model=TaskInDB)
async def delete_task(
    task_id: str,
    context: AuthContext = Depends(verified_session),
    task_store=Depends(get_task_store),
):
    """Delete one of the caller's tasks and return it."""
    return await task_service.delete_task(task_store, context.user.id, task_id)


@router.delete("", response_model=DeleteResult)
async def delete_all_tasks(
    context: AuthContext = Depends(verified_session),
    task_store=Depends(get_task_store),
):
    """Delete every task the caller owns."""
    deleted = await task_service.delete_all_tasks(task_store, context.user.id)
    return DeleteResult(deleted_count=deleted)
