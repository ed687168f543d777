import asyncio
from typing import Dict, Optional
import uuid


class StreamOperation:
    """A job started by a progress stream, with the task that runs it."""

    def __init__(self, kind: str, profile: str, task: asyncio.Task, pipeline=None):
        self.id = uuid.uuid4().hex
        self.kind = kind
        self.profile = profile
        self.task = task
        self.pipeline = pipeline

    def abort(self):
        if self.pipeline is not None:
            self.pipeline.abort()
        if not self.task.done():
            self.task.cancel()


class StreamManager:
    """
    Tracks the jobs behind open progress streams so a client disconnect or
    server shutdown can abort them. Only touched from the event loop.
    """

    def __init__(self, logger=None):
        self.active_operations: Dict[str, StreamOperation] = {}
        self.logger = logger

    def register(
        self, kind: str, profile: str, task: asyncio.Task, pipeline=None
    ) -> StreamOperation:
        operation = StreamOperation(kind, profile, task, pipeline)
        self.active_operations[operation.id] = operation
        return operation

    def unregister(self, operation: Optional[StreamOperation]):
        if operation is not None:
            self.active_operations.pop(operation.id, None)

    def abort(self, operation: Optional[StreamOperation]):
        if operation is None:
            return
        if self.logger and not operation.task.done():
            self.logger.info(f"[{operation.profile}] aborting {operation.kind}")
        operation.abort()
        self.unregister(operation)

    async def shutdown(self) -> int:
        operations = list(self.active_operations.values())
        self.active_operations.clear()
        if not operations:
            return 0
        for operation in operations:
            self.abort(operation)
        await asyncio.gather(*(op.task for op in operations), return_exceptions=True)
        return len(operations)
