"""HTTP client for the remote task ledger.

The ledger is a ClickUp-style task API: backups are tracked as tasks in
a list, linked to their parent task through a relationship custom field,
and carry the backup archive (or its parts) as attachments.
"""

import logging
import os
import urllib.parse
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import requests
from requests_toolbelt import MultipartEncoder

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 90.0
DOWNLOAD_CHUNK_SIZE = 1024 * 1024


class LedgerError(Exception):
    """A ledger call failed (network error or non-2xx response)."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class Attachment:
    """A file attached to a ledger task."""

    url: str
    title: str = ""

    @property
    def file_name(self) -> str:
        """File name from the URL path, falling back to the title."""
        name = urllib.parse.unquote(
            urllib.parse.urlparse(self.url).path.rsplit("/", 1)[-1]
        )
        return Path(name).name or Path(self.title).name


class LedgerClient:
    """Ledger API calls over a shared ``requests.Session``.

    The session is injected so a single connection pool is shared by all
    workers. API credentials are sent per request rather than set on the
    session, because attachment downloads go to storage hosts that must
    not receive them.

    Args:
        session: Shared HTTP session
        api_url: Base URL of the API (no trailing slash)
        api_key: Token sent in the Authorization header
        list_id: List backup tasks are created in
        link_field_id: Relationship field used to link tasks
        timeout: Connect and read timeout, seconds
        auth_scheme: Optional scheme prefix, e.g. "Bearer"
    """

    def __init__(
        self,
        session: requests.Session,
        api_url: str,
        api_key: str,
        list_id: Optional[str] = None,
        link_field_id: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        auth_scheme: str = "",
    ) -> None:
        self.session = session
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.list_id = list_id
        self.link_field_id = link_field_id
        self.timeout = timeout
        self.auth_scheme = auth_scheme

    @classmethod
    def from_config(cls, config, session: requests.Session) -> "LedgerClient":
        """Build a client from a ``LedgerConfig``."""
        return cls(
            session=session,
            api_url=config.api_url,
            api_key=config.api_key or "",
            list_id=config.list_id,
            link_field_id=config.link_field_id,
            timeout=config.timeout,
            auth_scheme=config.auth_scheme,
        )

    def _headers(self) -> dict[str, str]:
        token = f"{self.auth_scheme} {self.api_key}" if self.auth_scheme else self.api_key
        return {"accept": "application/json", "Authorization": token}

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.api_url}{path}"
        headers = self._headers()
        headers.update(kwargs.pop("headers", {}))
        try:
            response = self.session.request(
                method, url, headers=headers, timeout=(self.timeout, self.timeout), **kwargs
            )
        except requests.RequestException as e:
            raise LedgerError(f"{method} {path} failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise LedgerError(
                f"{method} {path} returned unexpected status {response.status_code}",
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _json(response: requests.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise LedgerError(f"Invalid JSON response: {e}") from e
        if not isinstance(data, dict):
            raise LedgerError("Unexpected JSON response shape")
        return data

    def create_task(self, name: str, status: str = "in progress") -> str:
        """Create a task in the configured list and return its id."""
        if not self.list_id:
            raise LedgerError("No ledger list configured")
        logger.debug("Creating ledger task %r", name)
        response = self._request(
            "POST", f"/list/{self.list_id}/task", json={"name": name, "status": status}
        )
        task_id = self._json(response).get("id")
        if not task_id:
            raise LedgerError("Created task has no id")
        logger.info("Created ledger task %s (%s)", task_id, name)
        return str(task_id)

    def link_task(self, parent_id: str, child_id: str) -> None:
        """Add ``child_id`` to the relationship field of ``parent_id``."""
        if not self.link_field_id:
            raise LedgerError("No ledger link field configured")
        self._request(
            "POST",
            f"/task/{parent_id}/field/{self.link_field_id}",
            json={"value": {"add": [child_id]}},
        )
        logger.info("Linked ledger task %s to %s", child_id, parent_id)

    def attach_file(self, task_id: str, path: Path | str) -> None:
        """Upload ``path`` as a multipart attachment of ``task_id``.

        The body is streamed from the open file, so a part is never held in
        memory whole.
        """
        path = Path(path)
        logger.info("Attaching %s to ledger task %s", path.name, task_id)
        try:
            with open(path, "rb") as f:
                encoder = MultipartEncoder(
                    fields={"attachment": (path.name, f, "application/octet-stream")}
                )
                self._request(
                    "POST",
                    f"/task/{task_id}/attachment",
                    data=encoder,
                    headers={"Content-Type": encoder.content_type},
                )
        except OSError as e:
            raise LedgerError(f"Cannot read {path}: {e}") from e
        logger.debug("Attached %s to ledger task %s", path.name, task_id)

    def set_status(self, task_id: str, status: str) -> None:
        self._request("PUT", f"/task/{task_id}", json={"status": status})
        logger.info("Set ledger task %s status to %r", task_id, status)

    def post_comment(self, task_id: str, text: str) -> None:
        self._request("POST", f"/task/{task_id}/comment", json={"comment_text": text})
        logger.debug("Posted comment to ledger task %s", task_id)

    def get_task(self, task_id: str) -> dict[str, Any]:
        return self._json(self._request("GET", f"/task/{task_id}"))

    def list_attachments(self, task_id: str) -> list[Attachment]:
        """Attachments of ``task_id`` in the order the ledger returns them."""
        attachments = []
        for item in self.get_task(task_id).get("attachments") or []:
            url = item.get("url_w_host") or item.get("url")
            if not url:
                logger.warning("Skipping attachment without URL on task %s", task_id)
                continue
            attachments.append(Attachment(url=url, title=item.get("title") or ""))
        return attachments

    def download(self, attachment: Attachment, directory: Path | str) -> Path:
        """Stream ``attachment`` into ``directory`` and return the file path."""
        directory = Path(directory)
        name = attachment.file_name
        if not name or name in (".", ".."):
            raise LedgerError(f"Cannot derive a file name from {attachment.url}")
        target = directory / name

        try:
            with self.session.get(
                attachment.url, stream=True, timeout=(self.timeout, self.timeout)
            ) as response:
                if not 200 <= response.status_code < 300:
                    raise LedgerError(
                        f"Download of {name} returned status {response.status_code}",
                        status_code=response.status_code,
                    )
                with open(target, "wb") as f:
                    for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
        except requests.RequestException as e:
            target.unlink(missing_ok=True)
            raise LedgerError(f"Download of {name} failed: {e}") from e
        except OSError as e:
            target.unlink(missing_ok=True)
            raise LedgerError(f"Cannot write {target}: {e}") from e

        logger.info("Downloaded %s (%d bytes)", name, os.path.getsize(target))
        return target
