"""Task service: per-user task CRUD and paginated search."""

import math

from models.task import TaskCreate, TaskInDB, TaskPage, TaskSearchOptions, TaskUpdate
from storage.errors import NotFoundError


async def create_task(task_store, owner: str, task_data: TaskCreate) -> TaskInDB:
    return await task_store.create(owner, task_data.description, task_data.completed)


async def get_task(task_store, owner: str, task_id: str) -> TaskInDB:
    task = await task_store.find(owner, task_id)
    if task is None:
        raise NotFoundError("Task", task_id)
    return task


async def search_tasks(task_store, owner: str, search: TaskSearchOptions) -> TaskPage:
    """Return one page of the owner's tasks matching the search options."""
    tasks, total = await task_store.search(owner, search)
    page_size = search.options.limit
    return TaskPage(
        total_results=total,
        total_pages=math.ceil(total / page_size) if total else 0,
        current_page=search.options.skip // page_size + 1,
        page_size=page_size,
        tasks=tasks,
    )


async def update_task(task_store, owner: str, task_id: str, changes: TaskUpdate) -> TaskInDB:
    fields = changes.model_dump(exclude_none=True)
    if not fields:
        return await get_task(task_store, owner, task_id)
    task = await task_store.update(owner, task_id, fields)
    if task is None:
        raise NotFoundError("Task", task_id)
    return task


async def delete_task(task_store, owner: str, task_id: str) -> TaskInDB:
    task = await task_store.delete(owner, task_id)
    if task is None:
        raise NotFoundError("Task", task_id)
    return task


async def delete_all_tasks(task_store, owner: str) -> int:
    return await task_store.delete_by_owner(owner)
