from __future__ import annotations
import json
import math
import os
import re
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from lexer import IndyError, IndyParseError, Lexer, clean_string_value, split_command_line, split_lines
from extensions import HookRegistry, RuntimeServices, build_default_services
from parser import (
    Assignment,
    BlankStatement,
    CommentStatement,
    ElseStatement,
    EndIfStatement,
    EndLoopStatement,
    EndStatement,
    IfStatement,
    IgnoredStatement,
    LoopStatement,
    Parser,
    Program,
    PromptStatement,
    RunStatement,
    SayStatement,
    SourceLocation,
    StartStatement,
    Statement,
    UnknownStatement,
    WaitStatement,
)


STATE_BEFORE_START = "before-start"
STATE_RUNNING = "running"
STATE_TERMINATED = "terminated"
STATE_EXHAUSTED = "exhausted"

ENGINE_PREFIX = "[Indy Engine]"

_PLACEHOLDER = re.compile(r"\{([^{}\s]+)\}")
_LOOP_COUNT = re.compile(r"[0-9]+")


class IndyRuntimeError(IndyError):
    """Raised for runtime faults."""

    def __init__(
        self,
        message: str,
        *,
        location: Optional[SourceLocation] = None,
        rewrite_rule: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.location = location
        self.rewrite_rule = rewrite_rule
        self.step_index: Optional[int] = None


class IndyTerminationError(IndyRuntimeError):
    """Raised when the cursor runs off the script without reaching 'end'."""


@dataclass
class Environment:
    values: Dict[str, str] = field(default_factory=dict)

    @staticmethod
    def validate_name(name: str) -> None:
        if name == "":
            raise IndyRuntimeError("Variable names cannot be empty", rewrite_rule="ASSIGN")
        if any(ch.isspace() for ch in name):
            raise IndyRuntimeError(f"Variable names cannot contain spaces: '{name}'", rewrite_rule="ASSIGN")

    def set(self, name: str, value: str) -> None:
        self.validate_name(name)
        self.values[name] = value

    def get(self, name: str) -> str:
        return self.values.get(name, "")

    def has(self, name: str) -> bool:
        return name in self.values

    def interpolate(self, text: str) -> str:
        # One pass over the original text: substituted values are not rescanned.
        return _PLACEHOLDER.sub(lambda match: self.get(match.group(1)), text)

    def snapshot(self) -> Dict[str, str]:
        def _render(value: str) -> str:
            if len(value) > 80:
                return value[:77] + "..."
            return value

        return {k: _render(v) for k, v in self.values.items()}


def evaluate_condition(condition: str, env: Environment) -> bool:
    """Evaluate ``VAR == VALUE`` or ``VAR != VALUE`` against ``env``.

    The left side is always a variable name. The right side is a variable
    when one of that name is defined, otherwise a (possibly quoted) literal.
    """
    if "==" in condition:
        left, right = condition.split("==", 1)
        op = "=="
    elif "!=" in condition:
        left, right = condition.split("!=", 1)
        op = "!="
    else:
        raise IndyRuntimeError(
            "Invalid condition format. Use VAR == VALUE or VAR != VALUE.",
            rewrite_rule="IF",
        )
    left_value = env.get(left.strip())
    right = right.strip()
    right_value = env.get(right) if env.has(right) else clean_string_value(right)
    if op == "==":
        return left_value == right_value
    return left_value != right_value


@dataclass
class ConditionalFrame:
    active: bool


@dataclass
class LoopFrame:
    start_line_index: int
    max_iterations: int
    current_iteration: int = 0


Frame = Union[ConditionalFrame, LoopFrame]


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    source_location: Optional[SourceLocation]
    statement: Optional[str]
    env_snapshot: Optional[Dict[str, str]]
    rewrite_record: Optional[Dict[str, Any]]


class StateLogger:
    def __init__(self, verbose: bool) -> None:
        self.verbose = verbose
        self.entries: List[StateEntry] = []
        self.next_state_index = 0
        self.last_state_id = "seed"

    def record(
        self,
        *,
        location: Optional[SourceLocation],
        statement: Optional[str],
        rewrite_record: Optional[Dict[str, Any]] = None,
        env_snapshot: Optional[Dict[str, str]] = None,
    ) -> StateEntry:
        rewrite = {} if rewrite_record is None else rewrite_record
        if "from_state_id" not in rewrite:
            rewrite["from_state_id"] = self.last_state_id
        step_index = self.next_state_index
        state_id = f"s_{step_index:06d}"
        rewrite["to_state_id"] = state_id
        entry = StateEntry(
            step_index=step_index,
            state_id=state_id,
            source_location=location,
            statement=statement,
            env_snapshot=env_snapshot,
            rewrite_record=rewrite,
        )
        self.entries.append(entry)
        self.last_state_id = state_id
        self.next_state_index += 1
        return entry

    def last_entry(self) -> Optional[StateEntry]:
        return self.entries[-1] if self.entries else None


CommandImpl = Callable[["Interpreter", Statement, Environment], None]


def _format_seconds(seconds: float) -> str:
    return f"{seconds:g}"


class Commands:
    """Executes the non-control statements of a script."""

    def __init__(self) -> None:
        self.table: Dict[type, CommandImpl] = {
            SayStatement: self._say,
            WaitStatement: self._wait,
            PromptStatement: self._prompt,
            RunStatement: self._run,
            Assignment: self._assign,
            IgnoredStatement: self._ignore,
            UnknownStatement: self._unknown,
        }

    def invoke(self, interpreter: "Interpreter", statement: Statement, env: Environment) -> None:
        impl = self.table.get(type(statement))
        if impl is None:
            raise IndyRuntimeError(
                f"No command handler for {statement.__class__.__name__}",
                location=statement.location,
                rewrite_rule="internal",
            )
        impl(interpreter, statement, env)

    def _say(self, interpreter: "Interpreter", statement: SayStatement, env: Environment) -> None:
        text = env.interpolate(clean_string_value(statement.text))
        interpreter.output_sink(text + "\n")
        interpreter.io_log.append({"event": "SAY", "text": text})

    def _wait(self, interpreter: "Interpreter", statement: WaitStatement, env: Environment) -> None:
        if statement.duration is None:
            raise IndyRuntimeError(
                "'wait' command requires a duration in seconds.",
                location=statement.location,
                rewrite_rule="WAIT",
            )
        seconds = math.nan
        if "_" not in statement.duration:
            try:
                seconds = float(statement.duration)
            except ValueError:
                pass
        if not math.isfinite(seconds):
            raise IndyRuntimeError(
                "Invalid duration for 'wait'. Must be a number.",
                location=statement.location,
                rewrite_rule="WAIT",
            )
        interpreter.trace(f"Waiting for {_format_seconds(seconds)} seconds...")
        try:
            milliseconds = round(max(seconds, 0.0) * 1000)
            interpreter.services.clock(milliseconds / 1000)
        except (OverflowError, ValueError) as exc:
            raise IndyRuntimeError(
                f"Duration for 'wait' is out of range: {_format_seconds(seconds)} seconds ({exc})",
                location=statement.location,
                rewrite_rule="WAIT",
            )
        interpreter.io_log.append({"event": "WAIT", "milliseconds": milliseconds})

    def _prompt(self, interpreter: "Interpreter", statement: PromptStatement, env: Environment) -> None:
        if statement.target is None or statement.message is None:
            raise IndyRuntimeError(
                "'prompt' command syntax is incorrect. Use: prompt VAR=\"Message\"",
                location=statement.location,
                rewrite_rule="PROMPT",
            )
        try:
            env.validate_name(statement.target)
        except IndyRuntimeError as error:
            error.location = statement.location
            error.rewrite_rule = "PROMPT"
            raise
        message = env.interpolate(clean_string_value(statement.message))
        interpreter.output_sink(f"{message}: ")
        try:
            text = interpreter.input_provider()
        except EOFError:
            # End of input reads as an empty line.
            text = ""
        value = text.strip()
        env.set(statement.target, value)
        interpreter.io_log.append({"event": "PROMPT", "prompt": message, "text": value})

    def _run(self, interpreter: "Interpreter", statement: RunStatement, env: Environment) -> None:
        command = env.interpolate(clean_string_value(statement.command))
        location = statement.location
        try:
            argv = split_command_line(command, location.file, location.line)
        except IndyParseError as exc:
            raise IndyRuntimeError(str(exc), location=location, rewrite_rule="RUN")
        if not argv or argv[0] == "":
            raise IndyRuntimeError(
                "'run' command requires a program to execute.",
                location=location,
                rewrite_rule="RUN",
            )
        program, args = argv[0], argv[1:]
        interpreter.trace(f"Running: {' '.join(argv)}")
        try:
            result = interpreter.services.process_runner(program, args)
        except (OSError, ValueError) as exc:
            raise IndyRuntimeError(f"Failed to execute '{program}': {exc}", location=location, rewrite_rule="RUN")

        out = result.stdout.decode("utf-8", errors="replace")
        err = result.stderr.decode("utf-8", errors="replace")
        # Record the RUN event for deterministic logging/replay, including captured output.
        interpreter.io_log.append(
            {"event": "RUN", "argv": argv, "code": result.exit_status, "stdout": out, "stderr": err}
        )
        if result.exit_status == 0:
            if out:
                interpreter.output_sink(out)
            return
        detail = f": {err.strip()}" if err.strip() else ""
        if result.exit_status is None:
            message = f"Command '{program}' terminated without an exit status{detail}"
        else:
            message = f"Command '{program}' failed with exit code {result.exit_status}{detail}"
        raise IndyRuntimeError(message, location=location, rewrite_rule="RUN")

    def _assign(self, interpreter: "Interpreter", statement: Assignment, env: Environment) -> None:
        try:
            env.set(statement.target, clean_string_value(statement.value))
        except IndyRuntimeError as error:
            error.location = statement.location
            raise

    def _ignore(self, interpreter: "Interpreter", statement: IgnoredStatement, env: Environment) -> None:
        return None

    def _unknown(self, interpreter: "Interpreter", statement: UnknownStatement, env: Environment) -> None:
        raise IndyRuntimeError(
            f"Unknown command or bad syntax: '{statement.text}'",
            location=statement.location,
            rewrite_rule="UNKNOWN",
        )


class Interpreter:
    def __init__(
        self,
        *,
        source: str,
        filename: str,
        verbose: bool = False,
        services: Optional[RuntimeServices] = None,
        input_provider: Optional[Callable[[], str]] = None,
        output_sink: Optional[Callable[[str], None]] = None,
        error_sink: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.source = source
        self._source_lines = split_lines(source)
        normalized_filename = filename if filename.startswith("<") else os.path.abspath(filename)
        self.filename = normalized_filename
        self.verbose = verbose
        self.services = services or build_default_services()
        self.hook_registry: HookRegistry = self.services.hook_registry
        self.input_provider = input_provider or (lambda: input())
        self.output_sink = output_sink or _write_stdout
        self.error_sink = error_sink or (lambda line: print(line, file=sys.stderr))
        self.commands = Commands()

        self.env = Environment()
        self.frames: List[Frame] = [ConditionalFrame(True)]
        self.cursor = 0
        self.state = STATE_BEFORE_START
        self.logger = StateLogger(verbose=verbose)
        self.logger.record(location=None, statement="<seed>", rewrite_record={"rule": "SEED"})
        self.io_log: List[Dict[str, Any]] = []
        self.errors: List[IndyRuntimeError] = []

    def parse(self) -> Program:
        lexer = Lexer(self.source, self.filename)
        tokens = lexer.tokenize()
        parser = Parser(tokens, self.filename, self._source_lines)
        return parser.parse()

    def run(self) -> None:
        """Execute the script from 'start' to 'end'.

        Recoverable errors are reported through the error sink and
        collected in ``self.errors``. Raises IndyTerminationError when the
        script never reaches 'end'.
        """
        program = self.parse()
        self._emit_event("program_start", self, program)
        try:
            self._execute_program(program)
        except IndyRuntimeError as error:
            self._emit_event("on_error", self, error)
            last = self.logger.last_entry()
            if last is not None:
                error.step_index = last.step_index
            raise
        except Exception as exc:
            self._emit_event("on_error", self, exc)
            last = self.logger.last_entry()
            loc = last.source_location if last else None
            wrapped = IndyRuntimeError(f"Internal interpreter error: {exc}", location=loc, rewrite_rule="internal")
            if last is not None:
                wrapped.step_index = last.step_index
            raise wrapped from exc
        else:
            self._emit_event("program_end", self, 0)

    def trace(self, message: str) -> None:
        if self.verbose:
            self.output_sink(f"{ENGINE_PREFIX} {message}\n")

    def scope_active(self) -> bool:
        for frame in reversed(self.frames):
            if isinstance(frame, ConditionalFrame):
                return frame.active
        return True

    def _execute_program(self, program: Program) -> None:
        statements = program.statements
        count = len(statements)
        emit_event = self._emit_event
        while self.cursor < count:
            statement = statements[self.cursor]
            if isinstance(statement, (BlankStatement, CommentStatement)):
                self.cursor += 1
                continue
            if isinstance(statement, StartStatement):
                self.state = STATE_RUNNING
                self.trace("Script started.")
                self.cursor += 1
                continue
            if self.state == STATE_BEFORE_START:
                self.cursor += 1
                continue

            emit_event("before_statement", self, statement, self.env)
            try:
                next_index = self._execute_statement(statement, self.cursor)
            except IndyRuntimeError as error:
                self._report(error)
                next_index = self.cursor + 1
            emit_event("after_statement", self, statement, self.env)
            if next_index is None:
                self.state = STATE_TERMINATED
                return
            self.cursor = next_index

        self.state = STATE_EXHAUSTED
        raise IndyTerminationError(
            "Script ended unexpectedly (missing 'end' keyword or 'start' was never called).",
            location=program.location,
            rewrite_rule="END",
        )

    def _execute_statement(self, statement: Statement, index: int) -> Optional[int]:
        """Run one statement and return the next cursor position (None on 'end')."""
        self._log_step(rule=statement.__class__.__name__, location=statement.location)
        if isinstance(statement, IfStatement):
            return self._execute_if(statement, index)
        if isinstance(statement, ElseStatement):
            return self._execute_else(statement, index)
        if isinstance(statement, EndIfStatement):
            return self._execute_end_if(statement, index)
        if isinstance(statement, LoopStatement):
            return self._execute_loop(statement, index)
        if isinstance(statement, EndLoopStatement):
            return self._execute_end_loop(statement, index)
        if isinstance(statement, EndStatement):
            self.trace("Script finished.")
            return None
        if self.scope_active():
            self.commands.invoke(self, statement, self.env)
        return index + 1

    def _execute_if(self, statement: IfStatement, index: int) -> int:
        active = self.scope_active()
        # The condition is evaluated even in an inactive scope; only its
        # truth is ignored there.
        try:
            truth = evaluate_condition(statement.condition, self.env)
        except IndyRuntimeError as error:
            error.location = statement.location
            self._report(error)
            truth = False
        if active and truth:
            self.frames.append(ConditionalFrame(True))
            return index + 1
        self.frames.append(ConditionalFrame(False))
        return statement.skip_target

    def _execute_else(self, statement: ElseStatement, index: int) -> int:
        top = self.frames[-1]
        if len(self.frames) == 1 or not isinstance(top, ConditionalFrame):
            raise IndyRuntimeError("'else' without matching 'if'", location=statement.location, rewrite_rule="ELSE")
        self.frames.pop()
        if top.active:
            self.frames.append(ConditionalFrame(False))
            return statement.end_target
        self.frames.append(ConditionalFrame(self.scope_active()))
        return index + 1

    def _execute_end_if(self, statement: EndIfStatement, index: int) -> int:
        if len(self.frames) == 1 or not isinstance(self.frames[-1], ConditionalFrame):
            raise IndyRuntimeError("'end if' without matching 'if'", location=statement.location, rewrite_rule="END_IF")
        self.frames.pop()
        return index + 1

    def _execute_loop(self, statement: LoopStatement, index: int) -> int:
        if not self.scope_active():
            # Skip the body and its 'end loop' without opening a frame.
            return min(statement.end_target + 1, len(self._source_lines))
        count_text = self.env.interpolate(statement.count)
        count = int(count_text) if _LOOP_COUNT.fullmatch(count_text) else 0
        if count < 1:
            self._report(
                IndyRuntimeError(
                    f"Invalid loop count '{count_text}'. Defaulting to a single iteration.",
                    location=statement.location,
                    rewrite_rule="LOOP",
                )
            )
            count = 1
        self.frames.append(LoopFrame(start_line_index=statement.body_start, max_iterations=count))
        return index + 1

    def _execute_end_loop(self, statement: EndLoopStatement, index: int) -> int:
        top = self.frames[-1]
        if not isinstance(top, LoopFrame):
            raise IndyRuntimeError(
                "'end loop' without matching 'loop'",
                location=statement.location,
                rewrite_rule="END_LOOP",
            )
        self.frames.pop()
        if top.current_iteration < top.max_iterations - 1:
            top.current_iteration += 1
            self.frames.append(top)
            return top.start_line_index
        return index + 1

    def _report(self, error: IndyRuntimeError) -> None:
        last = self.logger.last_entry()
        if last is not None:
            error.step_index = last.step_index
        self.errors.append(error)
        message = f"[Error] {error.message}"
        if self.verbose and error.location is not None:
            message += f" (line {error.location.line})"
        self.error_sink(message)

    def _emit_event(self, event: str, *args: Any, **kwargs: Any) -> None:
        try:
            self.hook_registry.emit(event, *args, **kwargs)
        except IndyRuntimeError:
            raise
        except Exception as exc:
            last = self.logger.last_entry()
            loc = last.source_location if last else None
            raise IndyRuntimeError(
                f"Hook '{event}' failed: {exc}",
                location=loc,
                rewrite_rule="EXT",
            ) from exc

    def _log_step(
        self,
        *,
        rule: str,
        location: Optional[SourceLocation],
    ) -> None:
        env_snapshot = self.env.snapshot() if self.verbose else None
        statement = location.statement if location else None
        rewrite = {"rule": rule}
        self.logger.record(
            location=location,
            statement=statement,
            env_snapshot=env_snapshot,
            rewrite_record=rewrite,
        )


def _write_stdout(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


@dataclass
class TracebackFrame:
    name: str
    location: Optional[SourceLocation]
    statement: Optional[str]
    state_entry: Optional[StateEntry]


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def build_frames(self) -> List[TracebackFrame]:
        # Indy-lang has no calls, so the traceback is the single script frame.
        entry = self.interpreter.logger.last_entry()
        location = entry.source_location if entry else None
        return [
            TracebackFrame(
                name="<script>",
                location=location,
                statement=entry.statement if entry else None,
                state_entry=entry,
            )
        ]

    def format_text(self, error: IndyRuntimeError, verbose: bool) -> str:
        lines = ["Traceback (most recent call last):"]
        for frame in self.build_frames():
            if frame.location:
                lines.append(f"  File \"{frame.location.file}\", line {frame.location.line}, in {frame.name}")
                if frame.statement:
                    lines.append(f"    {frame.statement}")
            else:
                lines.append(f"  <unknown location> in {frame.name}")
            if frame.state_entry:
                lines.append(
                    f"    State log index: {frame.state_entry.step_index}  State id: {frame.state_entry.state_id}"
                )
                if verbose and frame.state_entry.env_snapshot is not None:
                    snapshot = ", ".join(f"{k}={v}" for k, v in frame.state_entry.env_snapshot.items())
                    lines.append(f"    Env snapshot: {snapshot}")
        rule = error.rewrite_rule or "runtime"
        lines.append(f"{error.__class__.__name__}: {error.message} (rule: {rule})")
        return "\n".join(lines)

    def to_json(self, error: IndyRuntimeError) -> str:
        frames_json: List[Dict[str, Any]] = []
        for index, frame in enumerate(self.build_frames()):
            entry: Dict[str, Any] = {"frame_index": index, "name": frame.name}
            if frame.location:
                entry["source_location"] = {
                    "file": frame.location.file,
                    "line": frame.location.line,
                    "statement": frame.location.statement,
                }
            if frame.state_entry:
                entry["state_id"] = frame.state_entry.state_id
                entry["step_index"] = frame.state_entry.step_index
                if frame.state_entry.env_snapshot is not None:
                    entry["env_snapshot"] = frame.state_entry.env_snapshot
                if frame.state_entry.rewrite_record is not None:
                    entry["rewrite_record"] = frame.state_entry.rewrite_record
            frames_json.append(entry)
        data = {
            "error": {
                "type": error.__class__.__name__,
                "message": error.message,
                "failing_step_index": error.step_index,
            },
            "traceback": frames_json,
        }
        return json.dumps(data, indent=2)
