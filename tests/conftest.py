"""
Pytest configuration and fixtures for Appsody tests.
"""

import io
import sys
import tarfile
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import yaml
from rich.console import Console

# Add the repository root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from appsody.core.context import Context  # noqa: E402
from appsody.domain.models import CliConfig  # noqa: E402
from appsody.infra.docker_client import ImageConfig  # noqa: E402
from appsody.infra.log import Log  # noqa: E402


def _buffer_console() -> Console:
    return Console(file=io.StringIO(), width=4096, color_system=None, highlight=False)


@pytest.fixture
def log():
    """Verbose Log writing to in-memory buffers."""
    return Log(verbose=True, out=_buffer_console(), err=_buffer_console())


@pytest.fixture
def logged(log):
    """Everything written to the log so far, stdout then stderr."""

    def read() -> str:
        return log.out.file.getvalue() + log.err.file.getvalue()

    return read


@pytest.fixture
def home(tmp_path):
    home = tmp_path / "home"
    (home / "repository").mkdir(parents=True)
    return home


@pytest.fixture
def project_dir(tmp_path):
    project = tmp_path / "my-project"
    project.mkdir()
    return project


@pytest.fixture
def stack_image_config():
    return ImageConfig(
        env={
            "APPSODY_PROJECT_DIR": "/project",
            "APPSODY_MOUNTS": ".:/project/user-app",
            "APPSODY_DEPS": "/project/user-app/node_modules",
            "PORT": "3000",
        },
        labels={"org.opencontainers.image.version": "0.2.1"},
        exposed_ports=["3000", "9229"],
    )


@pytest.fixture
def ctx(log, home, project_dir, stack_image_config):
    """Context whose container engine and kubectl are mocks."""
    context = Context(
        log=log,
        cli_config=CliConfig(home=str(home)),
        config_file=home / ".appsody.yaml",
        project_dir=project_dir,
    )
    context.driver = MagicMock()
    context.driver.is_buildah = False
    context.driver.inspect.return_value = stack_image_config
    context.driver.run_bash.return_value = ""
    context.driver.ps.return_value = []
    context.cluster = MagicMock()
    return context


@pytest.fixture
def dry_ctx(ctx):
    ctx.dry_run = True
    return ctx


@pytest.fixture
def make_archive(tmp_path):
    """Build a .tar.gz from {name: content} and return its path."""

    def build(files: dict, name: str = "template.tar.gz") -> Path:
        path = tmp_path / name
        with tarfile.open(path, "w:gz") as tar:
            for member_name, content in files.items():
                data = content.encode("utf-8")
                info = tarfile.TarInfo(member_name)
                info.size = len(data)
                info.mode = 0o644
                tar.addfile(info, io.BytesIO(data))
        return path

    return build


@pytest.fixture
def nodejs_index(tmp_path, make_archive):
    """A v2 index offering nodejs-express with simple (default) and scaffold templates."""
    simple = make_archive(
        {
            "./app.js": "console.log('hi')\n",
            "./package.json": "{}\n",
            "./package-lock.json": "{}\n",
        },
        name="nodejs-express.v0.2.8.templates.simple.tar.gz",
    )
    scaffold = make_archive(
        {"./server/server.js": "// scaffold\n"},
        name="nodejs-express.v0.2.8.templates.scaffold.tar.gz",
    )
    index = {
        "apiVersion": "v2",
        "stacks": [
            {
                "id": "nodejs-express",
                "name": "Node.js Express",
                "version": "0.2.8",
                "description": "Express web framework for Node.js",
                "license": "Apache-2.0",
                "language": "nodejs",
                "maintainers": [{"name": "Jane", "email": "jane@example.com", "github-id": "jane"}],
                "default-template": "simple",
                "templates": [
                    {"id": "simple", "url": simple.as_uri()},
                    {"id": "scaffold", "url": scaffold.as_uri()},
                ],
            }
        ],
    }
    path = tmp_path / "incubator-index.yaml"
    path.write_text(yaml.safe_dump(index), encoding="utf-8")
    return path


@pytest.fixture
def repository_file(home, nodejs_index):
    """repository.yaml with incubator (default) pointing at nodejs_index."""
    path = home / "repository" / "repository.yaml"
    data = {
        "apiVersion": "v1",
        "repositories": [{"name": "incubator", "url": nodejs_index.as_uri(), "default": True}],
    }
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path
