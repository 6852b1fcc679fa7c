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
# HTTP / FILE DOWNLOADS
# -----------------------------------------------------------------------------
# Responsibility: Fetch index documents, template archives and operator
# manifests from http(s):// or file:// URLs.
#
# No explicit timeout is set; requests' defaults apply. Proxies come from
# the usual environment variables, which requests honours on its own.
# -----------------------------------------------------------------------------

from pathlib import Path
from urllib.parse import unquote, urlparse

import requests

from appsody.domain.errors import NetworkError
from appsody.infra.log import Log


def file_url_path(url: str) -> Path:
    """Map file:///abs/path (or file://C:/path) to a local Path."""
    parsed = urlparse(url)
    path = unquote(parsed.path)
    if parsed.netloc:
        path = parsed.netloc + path
    return Path(path)


def download_bytes(url: str) -> bytes:
    """
    Download url and return its body.

    Raises:
        NetworkError: On connection errors, non-200 responses or missing files.
    """
    if url.startswith("file://"):
        path = file_url_path(url)
        try:
            return path.read_bytes()
        except OSError as e:
            raise NetworkError(f"Could not download {url}: {e}")

    try:
        response = requests.get(url)
    except requests.exceptions.RequestException as e:
        raise NetworkError(f"Could not download {url}: {e}")
    if response.status_code != 200:
        raise NetworkError(f"Could not download {url}: {response.status_code} {response.reason}")
    return response.content


def download_to_disk(log: Log, url: str, dest: Path, dry_run: bool = False) -> None:
    if dry_run:
        log.info(f"Dry Run - Skipping download of url: {url} to destination {dest}")
        return
    log.debug(f"Downloading {url} to {dest}")
    data = download_bytes(url)
    dest.write_bytes(data)


def latest_release_tag(url: str) -> str:
    """
    Follow a GitHub ".../releases/latest" redirect and return the tag name.

    Raises:
        NetworkError: If the request fails.
    """
    try:
        response = requests.get(url, allow_redirects=True)
    except requests.exceptions.RequestException as e:
        raise NetworkError(f"Could not check for the latest release: {e}")
    if response.status_code != 200:
        raise NetworkError(f"Could not check for the latest release: {response.status_code}")
    return response.url.rstrip("/").rsplit("/", 1)[-1]
