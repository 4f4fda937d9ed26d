from typing import Any, Literal

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel

from sake import __version__
from sake.core.store import Store


class TaskModel(BaseModel):
    name: str
    comment: str | None = None
    parameters: list[str] = []
    dependencies: list[str] = []
    body: str = ""


class TaskListing(BaseModel):
    tasks: list[TaskModel]


def create_app(store: Store) -> FastAPI:
    """
    Read-only HTTP view of *store*.

    ``GET /`` serves the store as a task file, so another machine can run
    ``sake install http://host:port/`` against it. Nothing here saves the store.
    """
    app = FastAPI(
        title="sake",
        description="Serves installed sake tasks",
        version=__version__,
    )

    def _lookup(name: str) -> Any:
        task = store.tasks().lookup(name)
        if task is None:
            raise HTTPException(status_code=404, detail=f"Task `{name}' not found.")
        return task

    @app.get("/", response_class=PlainTextResponse)
    def task_file(
        pattern: str | None = None,
        include_all: bool = Query(True, alias="all"),
    ) -> str:
        """Every task (or those matching *pattern*) in task-file syntax."""
        return store.tasks().filter(pattern, include_hidden=include_all).render()

    @app.get("/tasks", response_model=TaskListing)
    def list_tasks(
        pattern: str | None = None,
        include_all: bool = Query(False, alias="all"),
    ) -> dict[str, Any]:
        """Same selection as ``sake list``: sorted, comment-less tasks only with ``all``."""
        tasks = store.tasks().sorted().filter(pattern, include_hidden=include_all)
        return {"tasks": [task.as_dict() for task in tasks]}

    @app.get("/tasks/{name}", response_class=PlainTextResponse)
    def task_detail(
        name: str,
        fmt: Literal["text", "json"] | None = Query(None, alias="format"),
    ) -> Response:
        """
        One task as task-file text, or as JSON with ``?format=json`` or a
        ``.json`` suffix. A task whose own name ends in ``.json`` is served
        under that name, so the suffix only applies when no such task exists.
        """
        if fmt is None and name.endswith(".json") and not store.has(name):
            name, fmt = name.removesuffix(".json"), "json"
        task = _lookup(name)
        if fmt == "json":
            return JSONResponse(TaskModel(**task.as_dict()).model_dump())
        return PlainTextResponse(task.render())

    return app
