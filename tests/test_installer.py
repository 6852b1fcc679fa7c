# =============================================================================
# APPSODY TEMPLATE INSTALLER TESTS
# =============================================================================
# Tests for template laydown, the whitelist, archive safety and `init`.
# =============================================================================

import pytest
import yaml

from appsody.core.installer import (
    CONFLICT_MESSAGE,
    EXISTING_PROJECT_MESSAGE,
    InitOptions,
    default_stack_image,
    in_whitelist,
    init_project,
    install,
    is_laydown_safe,
    safe_destination,
    untar,
)
from appsody.core.repository import RepositoryRegistry
from appsody.domain.errors import ConflictsExist, MalformedReference, UserInputError
from appsody.domain.models import IndexStack


@pytest.fixture
def registry(log, repository_file):
    return RepositoryRegistry(log, repository_file)


def read_config(project_dir):
    return yaml.safe_load((project_dir / ".appsody-config.yaml").read_text())


class TestWhitelist:
    """Test files tolerated in a directory before init."""

    @pytest.mark.parametrize("name", [".git", ".gitignore", ".vscode", ".vscode/settings.json", "./.project"])
    def test_whitelisted(self, name):
        assert in_whitelist(name)

    @pytest.mark.parametrize("name", ["app.js", ".gitx", "x.git", ".env", ".GIT"])
    def test_not_whitelisted(self, name):
        assert not in_whitelist(name)

    def test_empty_directory_is_safe(self, log, tmp_path):
        assert is_laydown_safe(log, tmp_path)

    def test_unknown_file_is_unsafe(self, log, tmp_path):
        (tmp_path / ".git").mkdir()
        (tmp_path / "app.js").write_text("")
        assert not is_laydown_safe(log, tmp_path)


class TestArchiveSafety:
    """Test that archive members cannot escape the project directory."""

    def test_inside(self, tmp_path):
        assert safe_destination(tmp_path, "./src/app.js") == (tmp_path / "src" / "app.js").resolve()

    def test_traversal_rejected(self, tmp_path):
        with pytest.raises(UserInputError, match="outside"):
            safe_destination(tmp_path, "../../etc/passwd")

    def test_untar_rejects_traversal(self, log, tmp_path, make_archive):
        archive = make_archive({"../evil.sh": "rm -rf /"}, name="evil.tar.gz")
        target = tmp_path / "project"
        target.mkdir()
        with pytest.raises(UserInputError):
            untar(log, archive, target, overwrite=True)
        assert not (tmp_path / "evil.sh").exists()

    def test_untar_writes_nothing_when_a_later_member_escapes(self, log, tmp_path, make_archive):
        archive = make_archive({"./a.txt": "x", "./src/b.txt": "y", "../evil.txt": "z"}, name="evil.tar.gz")
        target = tmp_path / "project"
        target.mkdir()
        with pytest.raises(UserInputError, match="outside"):
            untar(log, archive, target, overwrite=True)
        assert list(target.iterdir()) == []
        assert not (tmp_path / "evil.txt").exists()


class TestUntar:
    """Test extraction modes."""

    def test_conflict_leaves_directory_untouched(self, log, tmp_path, make_archive):
        archive = make_archive({"./app.js": "new", "./README.md": "readme"})
        target = tmp_path / "project"
        target.mkdir()
        (target / "app.js").write_text("mine")

        with pytest.raises(ConflictsExist) as exc:
            untar(log, archive, target)

        assert exc.value.conflicts == ["./app.js"]
        assert (target / "app.js").read_text() == "mine"
        assert not (target / "README.md").exists()

    def test_overwrite(self, log, tmp_path, make_archive):
        archive = make_archive({"./app.js": "new"})
        target = tmp_path / "project"
        target.mkdir()
        (target / "app.js").write_text("mine")

        untar(log, archive, target, overwrite=True)

        assert (target / "app.js").read_text() == "new"

    def test_no_template_only_writes_config(self, log, tmp_path, make_archive):
        archive = make_archive({"./app.js": "x", "./.appsody-config.yaml": "stack: a/b:1\n"})
        target = tmp_path / "project"
        target.mkdir()

        written = untar(log, archive, target, no_template=True)

        assert written == ["./.appsody-config.yaml"]
        assert not (target / "app.js").exists()


class TestDefaultStackImage:
    """Test the image written into .appsody-config.yaml."""

    def test_index_image_wins(self):
        stack = IndexStack(id="java", version="1.2.3", image="myreg.io/me/java:1.2")
        assert default_stack_image(stack) == "myreg.io/me/java:1.2"

    def test_derived_from_version(self):
        stack = IndexStack(id="nodejs-express", version="0.2.8")
        assert default_stack_image(stack) == "docker.io/appsody/nodejs-express:0.2"


class TestInitProject:
    """Test `appsody init` end to end against a file:// repository."""

    def test_init_default_template(self, ctx, registry, logged):
        init_project(ctx, registry, "nodejs-express", None, InitOptions())

        for name in ("app.js", "package.json", "package-lock.json"):
            assert (ctx.project_dir / name).is_file()
        config = read_config(ctx.project_dir)
        assert config["stack"] == "docker.io/appsody/nodejs-express:0.2"
        assert config["project-name"] == "my-project"
        assert not (ctx.project_dir / "nodejs-express.tar.gz").exists()
        assert "Your Appsody project name has been set to my-project" in logged()
        assert "the default template" in logged()

    def test_init_named_template(self, ctx, registry):
        init_project(ctx, registry, "incubator/nodejs-express", "scaffold", InitOptions())
        assert (ctx.project_dir / "server" / "server.js").is_file()
        assert not (ctx.project_dir / "app.js").exists()

    def test_conflict_without_overwrite(self, ctx, registry):
        (ctx.project_dir / "app.js").write_text("mine")

        with pytest.raises(UserInputError, match=CONFLICT_MESSAGE):
            init_project(ctx, registry, "nodejs-express", None, InitOptions())

        assert (ctx.project_dir / "app.js").read_text() == "mine"
        assert not (ctx.project_dir / ".appsody-config.yaml").exists()

    def test_overwrite(self, ctx, registry):
        (ctx.project_dir / "app.js").write_text("mine")
        init_project(ctx, registry, "nodejs-express", None, InitOptions(overwrite=True))
        assert (ctx.project_dir / "app.js").read_text() != "mine"

    def test_malformed_reference(self, ctx, registry):
        with pytest.raises(MalformedReference, match="malformed project parameter"):
            init_project(ctx, registry, "/nodejs-express", None, InitOptions())

    def test_reinit_refused(self, ctx, registry):
        (ctx.project_dir / ".appsody-config.yaml").write_text("stack: docker.io/appsody/x:1\n")
        with pytest.raises(UserInputError, match="existing appsody project"):
            init_project(ctx, registry, "nodejs-express", None, InitOptions())
        assert EXISTING_PROJECT_MESSAGE.startswith("cannot run")

    def test_none_template_writes_only_config(self, ctx, registry):
        (ctx.project_dir / "notes.txt").write_text("keep")

        init_project(ctx, registry, "nodejs-express", "none", InitOptions())

        assert read_config(ctx.project_dir)["stack"] == "docker.io/appsody/nodejs-express:0.2"
        assert not (ctx.project_dir / "app.js").exists()
        assert (ctx.project_dir / "notes.txt").read_text() == "keep"

    def test_no_template_flag_conflicts_with_template(self, ctx, registry):
        with pytest.raises(UserInputError, match="--no-template"):
            init_project(ctx, registry, "nodejs-express", "simple", InitOptions(no_template=True))

    def test_names_and_registry_saved(self, ctx, registry):
        options = InitOptions(project_name="demo", application_name="demo-app", stack_registry="my.reg:5000")
        init_project(ctx, registry, "nodejs-express", None, options)

        config = read_config(ctx.project_dir)
        assert config["project-name"] == "demo"
        assert config["application-name"] == "demo-app"
        assert config["stack"] == "my.reg:5000/appsody/nodejs-express:0.2"

    def test_invalid_project_name(self, ctx, registry):
        with pytest.raises(UserInputError, match="Invalid project-name"):
            init_project(ctx, registry, "nodejs-express", None, InitOptions(project_name="Bad_Name"))

    def test_dry_run_writes_nothing(self, dry_ctx, registry):
        init_project(dry_ctx, registry, "nodejs-express", None, InitOptions())
        assert list(dry_ctx.project_dir.iterdir()) == []


class TestInitScript:
    """Test the stack's init script hook."""

    def test_no_script_in_image(self, ctx):
        (ctx.project_dir / ".appsody-config.yaml").write_text("stack: docker.io/appsody/x:1\n")
        install(ctx)
        ctx.driver.run_bash.assert_called_once()
        assert "find /project -type f -name .appsody-init.sh" in ctx.driver.run_bash.call_args[0][1]

    def test_failure_is_a_warning(self, ctx, logged):
        (ctx.project_dir / ".appsody-config.yaml").write_text("stack: docker.io/appsody/x:1\n")
        ctx.driver.run_bash.return_value = "/project/.appsody-init.sh"
        ctx.driver.create.side_effect = UserInputError("boom")

        install(ctx)

        assert "The stack init script failed" in logged()
        assert not (ctx.project_dir / ".appsody_init").exists()
