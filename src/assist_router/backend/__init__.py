"""Provider backend executors."""

from assist_router.backend.base import Executor
from assist_router.backend.devserver import DevserverDispatcher
from assist_router.backend.local_executor import LocalProcessExecutor, build_args
from assist_router.backend.remote_api import RemoteApiExecutor

__all__ = [
    "DevserverDispatcher",
    "Executor",
    "LocalProcessExecutor",
    "RemoteApiExecutor",
    "build_args",
]
