# =============================================================================
# APPSODY STACK TOOLKIT TESTS
# =============================================================================
# Tests for stack package, add-to-repo, remove-from-repo and create.
# =============================================================================

import tarfile
from unittest.mock import patch

import pytest
import yaml

from appsody.core import toolkit
from appsody.core.repository import RepositoryRegistry
from appsody.domain.errors import StackNotFound, UserInputError
from appsody.infra.git_client import GitError

STACK_YAML = {
    "name": "Test Stack",
    "version": "0.1.0",
    "description": "A stack for tests",
    "license": "Apache-2.0",
    "language": "nodejs",
    "maintainers": [{"name": "Jane", "email": "jane@example.com", "github-id": "jane"}],
    "default-template": "simple",
}


@pytest.fixture
def stack_ctx(ctx, tmp_path):
    """ctx whose working directory is a stack source tree."""
    stack = tmp_path / "test-stack"
    (stack / "image").mkdir(parents=True)
    (stack / "templates" / "simple").mkdir(parents=True)
    (stack / "templates" / "other").mkdir(parents=True)
    (stack / "stack.yaml").write_text(yaml.safe_dump(STACK_YAML))
    (stack / "image" / "Dockerfile-stack").write_text("FROM node:12\n")
    (stack / "templates" / "simple" / "app.js").write_text("console.log('hi')\n")
    (stack / "templates" / "other" / "main.js").write_text("\n")
    ctx.project_dir = stack
    return ctx


@pytest.fixture
def registry(log, repository_file):
    return RepositoryRegistry(log, repository_file)


@pytest.fixture(autouse=True)
def no_git():
    with patch("appsody.core.toolkit.GitProvider") as provider:
        provider.return_value.get_info.side_effect = GitError("not a git repository")
        yield provider


def load_yaml(path):
    return yaml.safe_load(path.read_text())


class TestHelpers:
    """Test naming helpers."""

    def test_image_tags(self):
        assert toolkit.image_tags("dev.local/java", "1.2.3") == [
            "dev.local/java:1",
            "dev.local/java:1.2",
            "dev.local/java:1.2.3",
        ]

    def test_archive_names(self):
        assert toolkit.template_archive_name("java", "1.2.3", "simple") == "java.v1.2.3.templates.simple.tar.gz"
        assert toolkit.source_archive_name("java", "1.2.3") == "java.v1.2.3.source.tar.gz"

    def test_require_stack_root(self, tmp_path):
        with pytest.raises(UserInputError, match="root of the stack"):
            toolkit.require_stack_root(tmp_path)


class TestPackage:
    """Test `appsody stack package`."""

    def test_builds_image_with_all_tags(self, stack_ctx, registry):
        result = toolkit.package(stack_ctx, registry)

        args, kwargs = stack_ctx.driver.build.call_args
        assert args[2] == ["dev.local/test-stack:0", "dev.local/test-stack:0.1", "dev.local/test-stack:0.1.0"]
        assert args[1].endswith("Dockerfile-stack")
        labels = kwargs["labels"]
        assert labels["dev.appsody.stack.id"] == "test-stack"
        assert labels["org.opencontainers.image.version"] == "0.1.0"
        assert result.image == "dev.local/test-stack:0.1.0"

    def test_registry_prefix(self, stack_ctx, registry):
        result = toolkit.package(stack_ctx, registry, "me", "my.reg:5000")
        assert result.tags[0] == "my.reg:5000/me/test-stack:0"

    def test_template_archives(self, stack_ctx, registry):
        toolkit.package(stack_ctx, registry)

        archive = stack_ctx.stacks_dir / "test-stack.v0.1.0.templates.simple.tar.gz"
        with tarfile.open(archive, "r:gz") as tar:
            names = tar.getnames()
            config = yaml.safe_load(tar.extractfile("./.appsody-config.yaml").read())
        assert "./app.js" in names
        assert config == {"stack": "dev.local/test-stack:0.1"}
        assert not (stack_ctx.project_dir / "templates" / "simple" / ".appsody-config.yaml").exists()
        assert (stack_ctx.stacks_dir / "test-stack.v0.1.0.source.tar.gz").is_file()

    def test_index_written(self, stack_ctx, registry):
        toolkit.package(stack_ctx, registry)

        index = load_yaml(stack_ctx.stacks_dir / "dev.local-index.yaml")
        assert index["apiVersion"] == "v2"
        [stack] = index["stacks"]
        assert stack["id"] == "test-stack"
        assert stack["image"] == "dev.local/test-stack:0.1"
        assert stack["default-template"] == "simple"
        assert sorted(t["id"] for t in stack["templates"]) == ["other", "simple"]
        assert all(t["url"].startswith("file://") for t in stack["templates"])

    def test_repackage_replaces_entry(self, stack_ctx, registry):
        toolkit.package(stack_ctx, registry)
        toolkit.package(stack_ctx, registry)
        index = load_yaml(stack_ctx.stacks_dir / "dev.local-index.yaml")
        assert len(index["stacks"]) == 1

    def test_dev_local_repository_added(self, stack_ctx, registry, logged):
        toolkit.package(stack_ctx, registry)

        entry = registry.load().get("dev.local")
        assert entry is not None
        assert entry.url == toolkit.file_url(stack_ctx.stacks_dir / "dev.local-index.yaml")
        assert "Your local stack is available as part of repo dev.local" in logged()

    def test_dev_local_url_repaired(self, stack_ctx, registry, repository_file):
        data = load_yaml(repository_file)
        data["repositories"].append({"name": "dev.local", "url": "file:///stale/index.yaml"})
        repository_file.write_text(yaml.safe_dump(data))

        toolkit.package(stack_ctx, registry)

        entries = [e for e in registry.load().repositories if e.name == "dev.local"]
        assert len(entries) == 1
        assert entries[0].url.endswith("dev.local-index.yaml")

    def test_dry_run(self, stack_ctx, registry, repository_file):
        stack_ctx.dry_run = True
        before = repository_file.read_text()

        toolkit.package(stack_ctx, RepositoryRegistry(stack_ctx.log, repository_file, dry_run=True))

        assert not (stack_ctx.stacks_dir / "dev.local-index.yaml").exists()
        assert repository_file.read_text() == before


class TestAddToRepo:
    """Test `appsody stack add-to-repo`."""

    def test_new_repository_index(self, stack_ctx, registry):
        path = toolkit.add_to_repo(stack_ctx, registry, "my-repo", "https://example.com/releases/")

        assert path == stack_ctx.stacks_dir / "my-repo-index.yaml"
        [stack] = load_yaml(path)["stacks"]
        urls = {t["id"]: t["url"] for t in stack["templates"]}
        assert urls["simple"] == "https://example.com/releases/test-stack.v0.1.0.templates.simple.tar.gz"
        assert stack["src"] == "https://example.com/releases/test-stack.v0.1.0.source.tar.gz"

    def test_file_repository_edited_in_place(self, stack_ctx, registry, nodejs_index):
        path = toolkit.add_to_repo(stack_ctx, registry, "incubator")

        assert path == nodejs_index
        ids = sorted(s["id"] for s in load_yaml(nodejs_index)["stacks"])
        assert ids == ["nodejs-express", "test-stack"]

    def test_local_cache_reused(self, stack_ctx, registry):
        stack_ctx.stacks_dir.mkdir(parents=True)
        cached = stack_ctx.stacks_dir / "my-repo-index.yaml"
        cached.write_text(yaml.safe_dump({"apiVersion": "v2", "stacks": [{"id": "kept"}]}))

        toolkit.add_to_repo(stack_ctx, registry, "my-repo", use_local_cache=True)

        ids = sorted(s["id"] for s in load_yaml(cached)["stacks"])
        assert ids == ["kept", "test-stack"]


class TestRemoveFromRepo:
    """Test `appsody stack remove-from-repo`."""

    def test_unknown_repository(self, ctx, registry):
        with pytest.raises(UserInputError, match="does not exist within the repository list"):
            toolkit.remove_from_repo(ctx, registry, "nope", "nodejs-express")

    def test_removes_from_file_repository(self, ctx, registry, nodejs_index, logged):
        toolkit.remove_from_repo(ctx, registry, "incubator", "nodejs-express")

        assert load_yaml(nodejs_index)["stacks"] == []
        assert "Repository index file updated successfully" in logged()

    def test_stack_not_in_index(self, ctx, registry, nodejs_index, logged):
        before = nodejs_index.read_text()
        toolkit.remove_from_repo(ctx, registry, "incubator", "java")
        assert "Stack: java does not exist in repository index file" in logged()
        assert nodejs_index.read_text() == before


class TestCreate:
    """Test `appsody stack create`."""

    @pytest.fixture
    def starter_registry(self, log, home, tmp_path, make_archive):
        source = make_archive(
            {"./stack.yaml": "name: Starter\n", "./image/Dockerfile-stack": "FROM scratch\n"},
            name="starter.v0.1.0.source.tar.gz",
        )
        index = tmp_path / "starter-index.yaml"
        index.write_text(
            yaml.safe_dump(
                {
                    "apiVersion": "v2",
                    "stacks": [
                        {"id": "starter", "version": "0.1.0", "src": source.as_uri()},
                        {"id": "nosource", "version": "0.1.0"},
                    ],
                }
            )
        )
        path = home / "repository" / "repository.yaml"
        path.write_text(
            yaml.safe_dump({"repositories": [{"name": "incubator", "url": index.as_uri(), "default": True}]})
        )
        return RepositoryRegistry(log, path)

    def test_creates_stack(self, ctx, starter_registry, logged):
        target = toolkit.create(ctx, starter_registry, "my-stack")

        assert target == ctx.project_dir / "my-stack"
        assert (target / "stack.yaml").read_text() == "name: Starter\n"
        assert (target / "image" / "Dockerfile-stack").is_file()
        assert "Stack created: my-stack" in logged()

    def test_existing_directory(self, ctx, starter_registry):
        (ctx.project_dir / "my-stack").mkdir()
        with pytest.raises(UserInputError, match="already exists"):
            toolkit.create(ctx, starter_registry, "my-stack")

    def test_invalid_name(self, ctx, starter_registry):
        with pytest.raises(UserInputError, match="Invalid project-name"):
            toolkit.create(ctx, starter_registry, "My_Stack")

    def test_copy_needs_repo(self, ctx, starter_registry):
        with pytest.raises(UserInputError, match="<repo>/<stack>"):
            toolkit.create(ctx, starter_registry, "my-stack", "starter")

    def test_stack_not_found(self, ctx, starter_registry):
        with pytest.raises(StackNotFound, match="Stack not found in index"):
            toolkit.create(ctx, starter_registry, "my-stack", "incubator/java")

    def test_stack_without_source(self, ctx, starter_registry):
        with pytest.raises(StackNotFound, match="No source URL"):
            toolkit.create(ctx, starter_registry, "my-stack", "incubator/nosource")

    def test_source_with_escaping_member_writes_nothing(self, tmp_path, make_archive):
        archive = make_archive({"./stack.yaml": "name: x\n", "../outside.txt": "z"}, name="source.tar.gz")
        destination = tmp_path / "my-stack"
        destination.mkdir()
        with pytest.raises(UserInputError, match="outside"):
            toolkit.untar_source(archive, destination)
        assert list(destination.iterdir()) == []
