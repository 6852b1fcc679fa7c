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
# REPOSITORY REGISTRY
# -----------------------------------------------------------------------------
# Responsibility: The user's named stack repositories and the indices they
# point at.
#
# - repository.yaml is repaired on every read (legacy names and URLs, and
#   exactly one default entry) and the repair is persisted
# - indices are downloaded at most once per URL per invocation
# - batch reads return what could be read plus an IndexErrors collection
# - [repo/]stack references resolve to a concrete stack and template
# -----------------------------------------------------------------------------

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError
from rich.table import Table

from appsody.core.config import read_yaml, write_yaml
from appsody.domain.errors import (
    IndexErrors,
    IndexSchemaError,
    IndexUnreadable,
    InternalError,
    MalformedReference,
    NetworkError,
    NoDefaultTemplate,
    StackNotFound,
    TemplateNotFound,
    UserInputError,
)
from appsody.domain.models import (
    INCUBATOR_REPO_NAME,
    INCUBATOR_REPO_URL,
    IndexOutput,
    IndexOutputRepository,
    IndexStack,
    RepositoryEntry,
    RepositoryFile,
    RepositoryIndex,
    Template,
)
from appsody.infra.download import download_bytes
from appsody.infra.log import Log

LEGACY_REPO_NAME = "appsodyhub"
LEGACY_INDEX_URL = "https://raw.githubusercontent.com/appsody/stacks/master/index.yaml"
NO_TEMPLATE = "none"

REPO_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9\-_]{1,50}$")


@dataclass
class StackRow:
    """One line of `appsody list`."""

    repo: str
    id: str
    version: str
    templates: str
    description: str


@dataclass
class ResolvedStack:
    """A reference resolved against a repository index."""

    repo_name: str
    stack: IndexStack
    template: Optional[Template]
    index: RepositoryIndex

    @property
    def template_id(self) -> str:
        return self.template.id if self.template else NO_TEMPLATE


def parse_reference(reference: str) -> tuple[Optional[str], str]:
    """
    Split "[repo/]stack" into (repo or None, stack).

    Raises:
        MalformedReference: On a leading or trailing slash, or more than one slash.
    """
    parts = reference.split("/")
    if len(parts) == 1:
        return None, parts[0]
    if len(parts) == 2:
        if not parts[0] or not parts[1]:
            raise MalformedReference(
                "malformed project parameter - slash at the beginning or end should be removed"
            )
        return parts[0], parts[1]
    raise MalformedReference("malformed project parameter - too many slashes")


def templates_column(stack: IndexStack) -> str:
    """Sorted template ids joined with ", ", the default one prefixed with "*"."""
    default_id = stack.default_template_id()
    names = []
    for template in sorted(stack.templates, key=lambda t: t.id):
        marker = "*" if template.id == default_id else ""
        names.append(marker + template.id)
    return ", ".join(names)


def parse_index(raw: bytes, url: str) -> RepositoryIndex:
    """
    Raises:
        IndexSchemaError: If the bytes are not a YAML index document.
    """
    try:
        data = yaml.safe_load(raw) or {}
        if not isinstance(data, dict):
            raise IndexSchemaError(f"Repository index formatting error: {url} is not a mapping")
        return RepositoryIndex.model_validate(data)
    except (yaml.YAMLError, ValidationError) as e:
        raise IndexSchemaError(f"Repository index formatting error: {e}")


class RepositoryRegistry:
    """
    Reads and maintains repository.yaml and fetches the indices it names.

    Usage:
        registry = RepositoryRegistry(log, ctx.repository_file)
        resolved = registry.resolve("incubator/nodejs-express", "simple")
    """

    def __init__(self, log: Log, path: Path, dry_run: bool = False) -> None:
        self.log = log
        self.path = Path(path)
        self.dry_run = dry_run
        self.unsupported: list[str] = []
        self._indices: dict[str, RepositoryIndex] = {}

    # -- repository.yaml ----------------------------------------------------

    def load(self) -> RepositoryFile:
        """
        Read the registry, applying and persisting legacy repairs.

        Raises:
            InternalError: If the file is missing.
            IndexSchemaError: If it does not decode.
        """
        if not self.path.is_file():
            raise InternalError(
                f"Repository file does not exist {self.path}. Check to make sure appsody init has been run."
            )
        data = read_yaml(self.path)
        try:
            repo_file = RepositoryFile.model_validate(data)
        except ValidationError as e:
            raise IndexSchemaError(f"Failed reading repository file {self.path}: {e}")

        repaired = False
        for entry in repo_file.repositories:
            if entry.url == LEGACY_INDEX_URL:
                entry.url = INCUBATOR_REPO_URL
                repaired = True
            if entry.name == LEGACY_REPO_NAME and entry.url == INCUBATOR_REPO_URL:
                self.log.info("Migrating your repo name from 'appsodyhub' to 'incubator'")
                entry.name = INCUBATOR_REPO_NAME
                repaired = True
        if repaired:
            self.save(repo_file)
        return repo_file

    def save(self, repo_file: RepositoryFile) -> None:
        if self.dry_run:
            self.log.info(f"Dry Run - Skipping write of {self.path}")
            return
        write_yaml(self.path, repo_file.to_yaml_dict())

    def default_name(self, repo_file: RepositoryFile) -> str:
        """
        Return the default repository's name, repairing the file when no
        entry is marked default.

        Raises:
            InternalError: If the registry holds no repositories.
        """
        if not repo_file.repositories:
            raise InternalError(f"your {self.path} contains no repositories")
        current = repo_file.default_entry()
        if current is not None:
            return current.name

        chosen = repo_file.get(INCUBATOR_REPO_NAME)
        if chosen is None or len(repo_file.repositories) == 1:
            chosen = repo_file.repositories[0]
        chosen.is_default = True
        self.save(repo_file)
        self.log.info(f"Your default repository is now set to {chosen.name}")
        return chosen.name

    def add(self, name: str, url: str) -> RepositoryEntry:
        """
        Raises:
            UserInputError: For invalid or duplicate names and duplicate URLs.
            NetworkError: If the index at url cannot be read.
        """
        if len(name) > 50:
            raise UserInputError("Invalid repository name. The <name> must be less than 50 characters")
        if not REPO_NAME_PATTERN.match(name):
            raise UserInputError(
                "Invalid repository name. The <name> may only contain digits, numbers, "
                "dashes '-', and underscores '_'."
            )
        repo_file = self.load()
        if repo_file.has(name):
            raise UserInputError(f"A repository with the name '{name}' already exists.")
        if repo_file.has_url(url):
            raise UserInputError(f"A repository with the URL '{url}' already exists.")

        index = self.fetch_index(name, url)
        if not index.is_supported():
            self.log.warning(
                f"The repository .yaml for {name} has a more recent APIVersion than the current "
                "Appsody CLI supports (v2), it is strongly suggested that you update your Appsody "
                "CLI to the latest version."
            )

        entry = RepositoryEntry(name=name, url=url)
        if self.dry_run:
            self.log.info(f"Dry Run - Skipping appsody repo add repository Name: {name}, URL: {url}")
            return entry
        repo_file.add(entry)
        self.save(repo_file)
        self.log.info(f"Repository {name} was added to your configured list of repositories.")
        return entry

    def remove(self, name: str) -> None:
        """
        Raises:
            UserInputError: If name is unknown or is the default repository.
        """
        repo_file = self.load()
        if not repo_file.has(name):
            raise UserInputError(f"The repository '{name}' is not in your configured list of repositories")
        if self.default_name(repo_file) == name:
            raise UserInputError(
                f"You cannot remove the repository {name} because it is the default repository."
            )
        if self.dry_run:
            self.log.info(f"Dry Run - Skipping appsody repo remove {name}")
            return
        repo_file.remove(name)
        self.save(repo_file)
        self.log.info(f"The {name} repository has been removed from your configured list of repositories.")

    def set_default(self, name: str) -> None:
        """
        Raises:
            UserInputError: If name is unknown.
        """
        repo_file = self.load()
        if not repo_file.has(name):
            raise UserInputError(f"The repository '{name}' is not in your configured list of repositories")
        current = self.default_name(repo_file)
        if current == name:
            self.log.warning(f"Your default repository has already been set to {name}")
            return
        if self.dry_run:
            self.log.info(f"Dry Run - Skipping appsody repo set-default {name}")
            return
        for entry in repo_file.repositories:
            entry.is_default = entry.name == name
        self.save(repo_file)
        self.log.info(f"Your default repository is now set to {name}")

    # -- indices ------------------------------------------------------------

    def fetch_index(self, repo_name: str, url: str) -> RepositoryIndex:
        """
        Download and parse one index, once per URL per invocation.

        Raises:
            IndexUnreadable: If the download or the parse fails.
        """
        if url in self._indices:
            return self._indices[url]
        self.log.debug(f"Downloading appsody repository index from {url}")
        try:
            index = parse_index(download_bytes(url), url)
        except (NetworkError, IndexSchemaError) as e:
            raise IndexUnreadable(repo_name, str(e))
        if not index.is_supported() and repo_name not in self.unsupported:
            self.log.debug(f"Adding unsupported repository {repo_name}")
            self.unsupported.append(repo_name)
        self._indices[url] = index
        return index

    def fetch_all(
        self, repo_file: RepositoryFile, only: Optional[str] = None
    ) -> tuple[dict[str, RepositoryIndex], IndexErrors]:
        """Read every index (or only one repo's); failures are collected, not raised."""
        indices: dict[str, RepositoryIndex] = {}
        errors = IndexErrors()
        for entry in repo_file.repositories:
            if only is not None and entry.name != only:
                continue
            try:
                indices[entry.name] = self.fetch_index(entry.name, entry.url)
            except IndexUnreadable as e:
                errors.add(entry.name, e.cause)
        return indices, errors

    def warn_unsupported(self) -> None:
        if self.unsupported:
            self.log.warning(
                "The following repositories .yaml have an APIVersion greater than v2 which your "
                "installed Appsody CLI supports, it is strongly suggested that you update your "
                f"Appsody CLI to the latest version: {self.unsupported}"
            )

    # -- listing ------------------------------------------------------------

    def list_rows(self, repo_name: Optional[str] = None) -> list[StackRow]:
        """
        Rows for `appsody list`, sorted by (repo, id).

        Raises:
            UserInputError: If repo_name is given but not configured.
            NetworkError: If no repository could be read at all.
        """
        repo_file = self.load()
        if repo_name is not None and not repo_file.has(repo_name):
            raise UserInputError(f"cannot locate repository named {repo_name}")
        indices, errors = self.fetch_all(repo_file, only=repo_name)
        if errors:
            self.log.error(f"The following indices could not be read, skipping:\n{errors}")
        if not indices:
            raise NetworkError("there are no repositories in your configuration")

        default = self.default_name(repo_file)
        rows = []
        for name, index in indices.items():
            label = f"*{name}" if name == default and repo_name is None else name
            for stack in index.all_stacks():
                rows.append(
                    StackRow(label, stack.id, stack.version, templates_column(stack), stack.description)
                )
        rows.sort(key=lambda row: (row.repo.lstrip("*"), row.id))
        return rows

    @staticmethod
    def stacks_table(rows: list[StackRow]) -> Table:
        table = Table(box=None, show_edge=False, pad_edge=False, header_style="bold")
        for column in ("REPO", "ID", "VERSION", "TEMPLATES"):
            table.add_column(column, no_wrap=True)
        table.add_column("DESCRIPTION", max_width=60)
        for row in rows:
            table.add_row(row.repo, row.id, row.version, row.templates, row.description)
        return table

    def repos_table(self) -> Table:
        repo_file = self.load()
        default = self.default_name(repo_file)
        table = Table(box=None, show_edge=False, pad_edge=False, header_style="bold")
        table.add_column("NAME", no_wrap=True)
        table.add_column("URL", no_wrap=True)
        for entry in repo_file.repositories:
            marker = "*" if entry.name == default else ""
            table.add_row(marker + entry.name, entry.url)
        return table

    def index_output(self, repo_name: Optional[str] = None) -> IndexOutput:
        """
        Machine-readable listing for `-o json|yaml`.

        Raises:
            NetworkError: If any index could not be read.
        """
        repo_file = self.load()
        indices, errors = self.fetch_all(repo_file, only=repo_name)
        if errors:
            raise NetworkError(f"Could not read indices: {errors}")
        repositories = [
            IndexOutputRepository(
                repositoryName=name, stacks=sorted(index.all_stacks(), key=lambda s: s.id)
            )
            for name, index in sorted(indices.items())
        ]
        return IndexOutput(
            apiVersion=repo_file.api_version,
            generated=repo_file.generated or datetime.now(timezone.utc).isoformat(),
            repositories=repositories,
        )

    # -- resolution ---------------------------------------------------------

    def resolve(self, reference: str, template: Optional[str] = None) -> ResolvedStack:
        """
        Turn "[repo/]stack" plus an optional template into concrete index entries.

        A template of "none" resolves with template=None.

        Raises:
            MalformedReference, StackNotFound, TemplateNotFound,
            NoDefaultTemplate: As documented on each.
            IndexUnreadable: If the chosen repository's index cannot be read.
        """
        repo_name, stack_id = parse_reference(reference)
        repo_file = self.load()
        if repo_name is None:
            self.log.debug("Non-fully qualified stack - retrieving default repo...")
            repo_name = self.default_name(repo_file)
        entry = repo_file.get(repo_name)
        if entry is None:
            raise UserInputError(f"Repository {repo_name} is not in configured list of repositories")

        index = self.fetch_index(repo_name, entry.url)
        if not index.is_supported():
            self.log.warning(
                f"The repository .yaml for {repo_name} has a more recent APIVersion than the "
                "current Appsody CLI supports (v2), it is strongly suggested that you update your "
                "Appsody CLI to the latest version."
            )
        stack = index.find_stack(stack_id)
        if stack is None:
            raise StackNotFound(
                f'Could not find a stack with the id "{stack_id}" in repository "{repo_name}". '
                "Run `appsody list` to see the available stacks or -h for help."
            )
        self.log.debug(f"Stack {stack_id} found in repo {repo_name}")

        if template == NO_TEMPLATE:
            return ResolvedStack(repo_name, stack, None, index)
        if not stack.templates and stack.urls:
            return self._resolve_legacy(repo_name, stack, template, index)
        template_id = template or stack.default_template_id()
        if not template_id:
            raise NoDefaultTemplate(
                'Cannot proceed, no template or "none" was specified and there is no default template.'
            )
        found = stack.find_template(template_id)
        if found is None:
            raise TemplateNotFound(
                f'Could not find a template "{template_id}" for stack id "{stack_id}" in '
                f'repository "{repo_name}"'
            )
        return ResolvedStack(repo_name, stack, found, index)

    @staticmethod
    def _resolve_legacy(
        repo_name: str, stack: IndexStack, template: Optional[str], index: RepositoryIndex
    ) -> ResolvedStack:
        legacy_id = stack.default_template or "default"
        if template and template != legacy_id:
            raise TemplateNotFound(f'template name is not "none" and does not match {legacy_id}.')
        return ResolvedStack(repo_name, stack, Template(id=legacy_id, url=stack.urls[0]), index)
