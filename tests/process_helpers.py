from __future__ import annotations

import subprocess
import threading
from dataclasses import dataclass, field


@dataclass
class FakeCompiler:
    """Stands in for ``subprocess.run`` when driving the clue binary."""

    stdout: str = ""
    stderr: str = ""
    returncode: int = 0
    version_output: str = "clue 3.2.0\n"
    calls: list[list[str]] = field(default_factory=list)
    envs: list[dict[str, str]] = field(default_factory=list)
    cwds: list[str | None] = field(default_factory=list)

    def __call__(self, argv, **kwargs) -> subprocess.CompletedProcess:
        self.calls.append(list(argv))
        self.envs.append(dict(kwargs.get("env") or {}))
        self.cwds.append(kwargs.get("cwd"))
        if "-V" in argv:
            return subprocess.CompletedProcess(argv, 0, self.version_output, "")
        return subprocess.CompletedProcess(argv, self.returncode, self.stdout, self.stderr)


@dataclass
class ScriptedCompiler:
    """Answers each compile call from a per-target script.

    A target mapped to a ``threading.Event`` blocks until the event is set,
    which lets a test hold one run open while another completes.
    """

    outputs: dict[str, tuple[int, str, str]]
    gates: dict[str, threading.Event] = field(default_factory=dict)
    started: dict[str, threading.Event] = field(default_factory=dict)

    def __call__(self, argv, **kwargs) -> subprocess.CompletedProcess:
        if "-V" in argv:
            return subprocess.CompletedProcess(argv, 0, "clue 3.4.1\n", "")
        target = argv[-1]
        started = self.started.get(target)
        if started is not None:
            started.set()
        gate = self.gates.get(target)
        if gate is not None:
            gate.wait(timeout=10)
        returncode, stdout, stderr = self.outputs[target]
        return subprocess.CompletedProcess(argv, returncode, stdout, stderr)


def missing_binary(argv, **kwargs) -> subprocess.CompletedProcess:
    raise FileNotFoundError(2, "No such file or directory", argv[0])
