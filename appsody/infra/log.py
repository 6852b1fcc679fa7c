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
# CONSOLE LOGGING
# -----------------------------------------------------------------------------
# Responsibility: Named, coloured log channels on top of rich consoles.
#
# Channels: Info, Warning, Error, Debug, Container, InitScript, Docker,
# Buildah. Info and Container write to stdout, the rest to stderr. Debug is
# silent unless verbose. Every channel except Info carries a "[Name] "
# prefix; under verbose Info carries one too.
#
# When verbose, every line is mirrored to a colourless log file under
# <home>/logs so ANSI escapes never land on disk.
# -----------------------------------------------------------------------------

from datetime import datetime
from pathlib import Path
from typing import IO, Callable

from rich.console import Console, RenderableType
from rich.text import Text

STDOUT_CHANNELS = {"Info", "Container"}

CHANNEL_STYLES = {
    "Info": "",
    "Warning": "yellow",
    "Error": "red",
    "Debug": "dim",
    "Container": "",
    "InitScript": "magenta",
    "Docker": "cyan",
    "Buildah": "cyan",
}


class Log:
    """
    Per-invocation logging sink.

    Carried on the command Context instead of living at module level so a
    test can hand in consoles that write to StringIO buffers.
    """

    def __init__(
        self,
        verbose: bool = False,
        out: Console | None = None,
        err: Console | None = None,
    ) -> None:
        self.verbose = verbose
        self.out = out or Console(highlight=False)
        self.err = err or Console(stderr=True, highlight=False)
        self._file: IO[str] | None = None
        self._file_console: Console | None = None
        self.log_path: Path | None = None

    def open_file(self, logs_dir: Path) -> Path:
        """
        Start mirroring output to appsody<date>T<time>.log in logs_dir.

        Colons are replaced so the name is valid on every filesystem.
        """
        logs_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime("%Y-%m-%dT%H:%M:%S").replace(":", "-")
        self.log_path = logs_dir / f"appsody{stamp}.log"
        self._file = open(self.log_path, "a", encoding="utf-8")
        self._file_console = Console(
            file=self._file, no_color=True, color_system=None, highlight=False, width=4096
        )
        self.debug(f"Logging to file {self.log_path}")
        return self.log_path

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
            self._file_console = None

    def _emit(self, channel: str, message: str) -> None:
        if channel == "Debug" and not self.verbose:
            return
        prefix = ""
        if self.verbose or channel != "Info":
            prefix = f"[{channel}] "
        line = Text(f"{prefix}{message}", style=CHANNEL_STYLES.get(channel, ""))
        console = self.out if channel in STDOUT_CHANNELS else self.err
        console.print(line, soft_wrap=True)
        if self._file_console is not None:
            self._file_console.print(Text(f"{prefix}{message}"), soft_wrap=True)

    def info(self, message: str) -> None:
        self._emit("Info", message)

    def warning(self, message: str) -> None:
        self._emit("Warning", message)

    def error(self, message: str) -> None:
        self._emit("Error", message)

    def debug(self, message: str) -> None:
        self._emit("Debug", message)

    def container(self, message: str) -> None:
        self._emit("Container", message)

    def init_script(self, message: str) -> None:
        self._emit("InitScript", message)

    def docker(self, message: str) -> None:
        self._emit("Docker", message)

    def buildah(self, message: str) -> None:
        self._emit("Buildah", message)

    def channel(self, name: str) -> Callable[[str], None]:
        """Look up a channel writer by its display name (e.g. "Docker")."""
        writers = {
            "Info": self.info,
            "Warning": self.warning,
            "Error": self.error,
            "Debug": self.debug,
            "Container": self.container,
            "InitScript": self.init_script,
            "Docker": self.docker,
            "Buildah": self.buildah,
        }
        return writers[name]

    def render(self, renderable: RenderableType) -> None:
        """Print a rich renderable (tables) to stdout and the log file."""
        self.out.print(renderable)
        if self._file_console is not None:
            self._file_console.print(renderable)
