from __future__ import annotations

import platform
import subprocess
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple


HOOK_EVENTS = {
    "program_start",
    "before_statement",
    "after_statement",
    "on_error",
    "program_end",
}


class IndyExtensionError(Exception):
    pass


@dataclass(frozen=True)
class ProcessResult:
    stdout: bytes
    stderr: bytes
    # None when the process was killed by a signal.
    exit_status: Optional[int]


ProcessRunner = Callable[[str, Sequence[str]], ProcessResult]
Clock = Callable[[float], None]


def run_process(program: str, args: Sequence[str]) -> ProcessResult:
    """Run ``program`` with ``args`` to completion, capturing both streams.

    Raises OSError when the program cannot be launched.
    """
    run_kwargs: Dict[str, Any] = {"stdout": subprocess.PIPE, "stderr": subprocess.PIPE}
    # On Windows, avoid creating a visible console window for subprocesses.
    if platform.system().lower().startswith("win"):
        run_kwargs["creationflags"] = subprocess.CREATE_NO_WINDOW
    completed = subprocess.run([program, *args], **run_kwargs)
    code = completed.returncode
    return ProcessResult(
        stdout=completed.stdout or b"",
        stderr=completed.stderr or b"",
        exit_status=code if code >= 0 else None,
    )


@dataclass
class HookRegistry:
    # event -> list[(priority, handler, owner)]
    _events: Dict[str, List[Tuple[int, Callable[..., None], str]]] = field(default_factory=dict)

    def on_event(self, event: str, handler: Callable[..., None], *, priority: int = 0, owner: str = "") -> None:
        if event not in HOOK_EVENTS:
            names = ", ".join(sorted(HOOK_EVENTS))
            raise IndyExtensionError(f"Unknown hook event '{event}' (expected one of: {names})")
        self._events.setdefault(event, []).append((priority, handler, owner))
        self._events[event].sort(key=lambda t: t[0], reverse=True)

    def emit(self, event: str, *args: Any, **kwargs: Any) -> None:
        for _priority, handler, _owner in self._events.get(event, []):
            handler(*args, **kwargs)


@dataclass
class RuntimeServices:
    hook_registry: HookRegistry = field(default_factory=HookRegistry)
    process_runner: ProcessRunner = run_process
    clock: Clock = time.sleep


def build_default_services() -> RuntimeServices:
    return RuntimeServices()
