"""Subprocess-based executor for locally installed CLI tools."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable
from typing import Any

from assist_router.config import DEFAULT_LOCAL_TIMEOUT_MS
from assist_router.errors import ProcessSpawnError, ProcessTimeout, RunCancelled
from assist_router.failure_classifier import classify_failure
from assist_router.models import ProviderDescriptor, ProviderResult, RunOptions
from assist_router.output_parser import parse_output
from assist_router.pricing import calculate_cost, lookup_pricing
from assist_router.usage import extract_usage

logger = logging.getLogger(__name__)

_READ_CHUNK = 64 * 1024
_REAP_TIMEOUT_SECONDS = 2.0

SpawnFn = Callable[..., Awaitable[Any]]


def build_args(
    fixed_args: tuple[str, ...] | list[str],
    prompt: str,
    options: RunOptions,
) -> list[str]:
    """Fixed flags, optional sandbox flag, then the prompt as the last positional."""

    args = [str(arg) for arg in fixed_args]
    if options.sandbox and "--sandbox" not in args:
        args.extend(["--sandbox", options.sandbox])
    args.append(prompt)
    return args


class LocalProcessExecutor:
    """Run a CLI tool with an argument vector and a wall-clock timeout."""

    def __init__(
        self,
        descriptor: ProviderDescriptor,
        *,
        default_timeout_ms: int = DEFAULT_LOCAL_TIMEOUT_MS,
        spawn: SpawnFn | None = None,
    ) -> None:
        if not descriptor.command:
            raise ValueError("Local executor requires a command.")
        self._descriptor = descriptor
        self._default_timeout_ms = default_timeout_ms
        self._spawn = spawn or asyncio.create_subprocess_exec

    async def run(self, prompt: str, options: RunOptions) -> ProviderResult:
        command = self._descriptor.command or ""
        argv = [command, *build_args(self._descriptor.args, prompt, options)]
        timeout_ms = options.timeout_ms or self._default_timeout_ms

        try:
            process = await self._spawn(
                *argv,
                cwd=options.cwd,
                env=os.environ.copy(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as error:
            raise ProcessSpawnError(f"Local command not found: {command}") from error
        except PermissionError as error:
            raise ProcessSpawnError(f"Local command is not executable: {command}") from error
        except OSError as error:
            raise ProcessSpawnError(
                f"Local command failed to start: {error}",
                transient=True,
            ) from error

        logger.info(
            "Spawned %s (pid=%s, timeout=%dms)",
            command,
            getattr(process, "pid", None),
            timeout_ms,
        )
        run = _ProcessRun(process)
        exit_code = await run.wait(timeout_ms=timeout_ms, cancel_event=options.cancel_event)
        if run.timed_out:
            logger.warning("%s exceeded %dms and was terminated", command, timeout_ms)
            raise ProcessTimeout(
                f"Local command timeout after {timeout_ms}ms: {command}",
                timeout_ms=timeout_ms,
            )
        if run.cancelled:
            raise RunCancelled(f"Local command cancelled: {command}")

        return self._build_result(exit_code=exit_code, stdout=run.stdout, stderr=run.stderr)

    def _build_result(self, *, exit_code: int, stdout: str, stderr: str) -> ProviderResult:
        descriptor = self._descriptor
        token_usage = extract_usage(stdout=stdout, stderr=stderr).to_token_usage()
        pricing = descriptor.pricing or lookup_pricing(
            provider=descriptor.name,
            model=descriptor.model,
        )
        error: str | None = None
        failure_class: str | None = None
        if exit_code != 0:
            classified = classify_failure(
                provider=descriptor.name,
                exit_code=exit_code,
                stdout=stdout,
                stderr=stderr,
            )
            error = classified.describe(exit_code=exit_code, stderr=stderr)
            failure_class = classified.failure_class.value
            logger.warning("%s exited with %d (%s)", descriptor.name, exit_code, failure_class)

        return ProviderResult(
            raw=stdout,
            parsed=parse_output(stdout),
            exit_code=exit_code,
            token_usage=token_usage,
            cost=calculate_cost(token_usage, pricing),
            error=error,
            stderr=stderr,
            provider=descriptor.name,
            failure_class=failure_class,
        )


class _ProcessRun:
    """One spawned child: output accumulation plus the timeout/exit race.

    Once the timer fires (or the caller cancels) the run is settled and a
    later natural exit is ignored. The child gets at most one termination
    signal.
    """

    def __init__(self, process: Any) -> None:
        self._process = process
        self._stdout_chunks: list[bytes] = []
        self._stderr_chunks: list[bytes] = []
        self._terminated = False
        self.timed_out = False
        self.cancelled = False

    @property
    def stdout(self) -> str:
        return b"".join(self._stdout_chunks).decode("utf-8", errors="replace")

    @property
    def stderr(self) -> str:
        return b"".join(self._stderr_chunks).decode("utf-8", errors="replace")

    async def wait(self, *, timeout_ms: int, cancel_event: asyncio.Event | None) -> int:
        readers = [
            asyncio.create_task(_drain(self._process.stdout, self._stdout_chunks)),
            asyncio.create_task(_drain(self._process.stderr, self._stderr_chunks)),
        ]
        exited = asyncio.create_task(self._process.wait())
        watched: set[asyncio.Task[Any]] = {exited}
        cancel_waiter: asyncio.Task[Any] | None = None
        if cancel_event is not None:
            cancel_waiter = asyncio.create_task(cancel_event.wait())
            watched.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(
                watched,
                timeout=timeout_ms / 1000,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            self.cancelled = True
            self._terminate_once()
            await self._reap(exited)
            await _discard(*readers, exited, cancel_waiter)
            raise

        if exited not in done:
            if cancel_waiter is not None and cancel_waiter in done:
                self.cancelled = True
            else:
                self.timed_out = True
            self._terminate_once()
            await self._reap(exited)
            await _discard(*readers, exited, cancel_waiter)
            return -1

        await _discard(cancel_waiter)
        await asyncio.gather(*readers)
        return int(exited.result())

    async def _reap(self, exited: asyncio.Task[Any]) -> None:
        """Give a signalled child a bounded chance to exit so it gets reaped."""

        await asyncio.wait({exited}, timeout=_REAP_TIMEOUT_SECONDS)

    def _terminate_once(self) -> None:
        if self._terminated:
            return
        self._terminated = True
        if getattr(self._process, "returncode", None) is not None:
            return
        try:
            self._process.terminate()
        except ProcessLookupError:
            return


async def _drain(stream: asyncio.StreamReader | None, chunks: list[bytes]) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            return
        chunks.append(chunk)


async def _discard(*tasks: asyncio.Task[Any] | None) -> None:
    pending = [task for task in tasks if task is not None]
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)
