# Copyright 2026 Pramod Kumar Voola
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

# -----------------------------------------------------------------------------
# SUBPROCESS PUMPS
# -----------------------------------------------------------------------------
# Responsibility: Run external binaries (docker, buildah, kubectl, git, init
# scripts) and relay their output line by line to a log channel.
#
# Streaming runs start one reader thread per pipe. The caller blocks on the
# readers reaching EOF before it waits on the process, so no output is lost
# when the child exits.
# -----------------------------------------------------------------------------

import shlex
import subprocess
import threading
from pathlib import Path
from typing import IO, Callable, Optional, Sequence

from appsody.domain.errors import AppsodyError
from appsody.infra.log import Log

LineSink = Callable[[str], None]


class ProcessError(AppsodyError):
    """Raised when a binary cannot be started at all (missing executable)."""

    pass


def format_command(cmd: Sequence[str]) -> str:
    return shlex.join([str(part) for part in cmd])


def _pump(stream: IO[str], sink: LineSink) -> None:
    for line in iter(stream.readline, ""):
        sink(line.rstrip("\r\n"))
    stream.close()


def run_and_listen(
    log: Log,
    cmd: Sequence[str],
    sink: LineSink,
    dry_run: bool = False,
    interactive: bool = False,
    cwd: Optional[Path] = None,
    env: Optional[dict] = None,
) -> int:
    """
    Run a command, streaming stdout and stderr through `sink`.

    Args:
        log: Logging sink for the "Running command" banner.
        cmd: Full argv, binary first.
        sink: Receives each output line with the newline stripped.
        dry_run: Log the command and return 0 without running it.
        interactive: Inherit this process's stdin.
        cwd: Working directory for the child.
        env: Full environment for the child (defaults to ours).

    Returns:
        The child's exit status (negative when killed by a signal).
    """
    if dry_run:
        log.info(f"Dry Run - Skipping command: {format_command(cmd)}")
        return 0

    log.info(f"Running command: {format_command(cmd)}")
    try:
        proc = subprocess.Popen(
            [str(part) for part in cmd],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            stdin=None if interactive else subprocess.DEVNULL,
            cwd=cwd,
            env=env,
            text=True,
            bufsize=1,
        )
    except OSError as e:
        raise ProcessError(f"Could not start {cmd[0]}: {e}")

    readers = [
        threading.Thread(target=_pump, args=(proc.stdout, sink), daemon=True),
        threading.Thread(target=_pump, args=(proc.stderr, sink), daemon=True),
    ]
    for reader in readers:
        reader.start()
    for reader in readers:
        reader.join()
    return proc.wait()


def run_capture(
    cmd: Sequence[str],
    cwd: Optional[Path] = None,
    timeout: Optional[int] = None,
) -> subprocess.CompletedProcess:
    """
    Run a command to completion and capture its output as text.

    Raises:
        ProcessError: If the binary is missing or the timeout expires.
    """
    try:
        return subprocess.run(
            [str(part) for part in cmd],
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        raise ProcessError(f"{cmd[0]} timed out after {timeout}s")
    except OSError as e:
        raise ProcessError(f"Could not start {cmd[0]}: {e}")
