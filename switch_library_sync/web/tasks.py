"""Background task manager with SSE streaming.

Each triggered operation runs on its own daemon thread. Tasks cannot be
cancelled once started; they run to completion or failure.
"""

import json
import logging
import threading
import uuid
from dataclasses import dataclass, field
from queue import Empty, Queue
from typing import Any, Generator

logger = logging.getLogger(__name__)


@dataclass
class TaskInfo:
    id: str
    operation: str
    status: str = "pending"  # pending, running, completed, failed
    curr: int = 0
    total: int = 0
    message: str = ""
    result: Any = None
    error: str = ""
    events: Queue = field(default_factory=Queue)
    done: threading.Event = field(default_factory=threading.Event)

    def to_dict(self, result_data: Any = None) -> dict[str, Any]:
        return {
            "id": self.id,
            "operation": self.operation,
            "status": self.status,
            "progress": {"curr": self.curr, "total": self.total, "message": self.message},
            "result": result_data,
            "error": self.error,
        }


class TaskManager:
    """Manages background tasks with SSE progress streaming."""

    def __init__(self):
        self._tasks: dict[str, TaskInfo] = {}
        self._lock = threading.Lock()

    def create(self, operation: str) -> str:
        """Create a new task. Returns task_id."""
        task_id = str(uuid.uuid4())[:8]
        task = TaskInfo(id=task_id, operation=operation)
        with self._lock:
            self._tasks[task_id] = task
        return task_id

    def run_in_background(self, task_id: str, fn, *args, **kwargs) -> None:
        """Run a function in a daemon thread, updating task status."""
        task = self.get(task_id)
        if not task:
            return

        def _run():
            task.status = "running"
            task.events.put({"event": "status", "data": "running"})
            try:
                result = fn(*args, **kwargs)
                self.complete(task_id, result)
            except Exception as e:
                logger.error("Task %s (%s) failed: %s", task_id, task.operation, e)
                self.fail(task_id, str(e))

        thread = threading.Thread(target=_run, name=f"task-{task.operation}", daemon=True)
        thread.start()

    def progress_callback(self, task_id: str):
        def callback(curr: int, total: int, message: str) -> None:
            self.update_progress(task_id, curr, total, message)

        return callback

    def update_progress(self, task_id: str, curr: int, total: int, msg: str) -> None:
        """Push a progress update."""
        task = self.get(task_id)
        if not task:
            return
        task.curr = curr
        task.total = total
        task.message = msg
        task.events.put({"event": "progress", "data": {"curr": curr, "total": total, "message": msg}})

    def complete(self, task_id: str, result: Any) -> None:
        """Mark task as completed."""
        task = self.get(task_id)
        if not task:
            return
        task.status = "completed"
        task.result = result
        task.events.put({"event": "complete", "data": result})
        task.done.set()

    def fail(self, task_id: str, error: str) -> None:
        """Mark task as failed."""
        task = self.get(task_id)
        if not task:
            return
        task.status = "failed"
        task.error = error
        task.events.put({"event": "error", "data": error})
        task.done.set()

    def get(self, task_id: str) -> TaskInfo | None:
        with self._lock:
            return self._tasks.get(task_id)

    def wait(self, task_id: str, timeout: float | None = None) -> TaskInfo | None:
        """Block until the task finishes or timeout passes."""
        task = self.get(task_id)
        if task:
            task.done.wait(timeout)
        return task

    def stream_events(self, task_id: str) -> Generator[str, None, None]:
        """Yield SSE-formatted event strings."""
        task = self.get(task_id)
        if not task:
            yield f"event: error\ndata: {{\"msg\": \"Task not found\"}}\n\n"
            return

        while True:
            try:
                event = task.events.get(timeout=30)
            except Empty:
                # Send keepalive
                yield ": keepalive\n\n"
                continue

            event_type = event["event"]
            data = event["data"]

            if isinstance(data, dict):
                yield f"event: {event_type}\ndata: {json.dumps(data)}\n\n"
            elif isinstance(data, str):
                yield f"event: {event_type}\ndata: {json.dumps({'msg': data})}\n\n"
            else:
                yield f"event: {event_type}\ndata: {json.dumps(to_jsonable(data))}\n\n"

            if event_type in ("complete", "error"):
                break


def to_jsonable(data: Any) -> Any:
    """Serialize task results: objects with to_dict, dataclasses, lists."""
    if data is None or isinstance(data, (str, int, float, bool, dict)):
        return data
    if isinstance(data, (list, tuple)):
        return [to_jsonable(d) for d in data]
    if hasattr(data, "to_dict"):
        return data.to_dict()
    try:
        from dataclasses import asdict
        return asdict(data)
    except TypeError:
        return {"msg": str(data)}
