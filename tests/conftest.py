from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

import pytest

from extensions import ProcessResult, RuntimeServices
from interpreter import Interpreter


@dataclass
class FakeProcesses:
    results: Dict[str, ProcessResult] = field(default_factory=dict)
    calls: List[Tuple[str, List[str]]] = field(default_factory=list)

    def __call__(self, program: str, args: Sequence[str]) -> ProcessResult:
        self.calls.append((program, list(args)))
        if program not in self.results:
            raise FileNotFoundError(2, "No such file or directory", program)
        return self.results[program]


@dataclass
class Harness:
    output: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    inputs: List[str] = field(default_factory=list)
    sleeps: List[float] = field(default_factory=list)
    processes: FakeProcesses = field(default_factory=FakeProcesses)
    services: RuntimeServices = field(default_factory=RuntimeServices)

    def read_line(self) -> str:
        if not self.inputs:
            raise EOFError
        return self.inputs.pop(0)

    def interpreter(self, source: str, *, verbose: bool = False) -> Interpreter:
        self.services.process_runner = self.processes
        self.services.clock = self.sleeps.append
        return Interpreter(
            source=source,
            filename="<test>",
            verbose=verbose,
            services=self.services,
            input_provider=self.read_line,
            output_sink=self.output.append,
            error_sink=self.errors.append,
        )

    def run(self, source: str, *, verbose: bool = False) -> Interpreter:
        interpreter = self.interpreter(source, verbose=verbose)
        interpreter.run()
        return interpreter

    @property
    def text(self) -> str:
        return "".join(self.output)

    def said(self) -> List[str]:
        return self.text.splitlines()


@pytest.fixture
def harness() -> Harness:
    return Harness()
