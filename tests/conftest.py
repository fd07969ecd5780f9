"""Pytest configuration and shared fixtures."""

import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from backup_courier.ledger import Attachment, LedgerError
from backup_courier.transaction import set_transaction_log


class FakeLedger:
    """In-memory stand-in for LedgerClient.

    Records every call; ``fail_on(method, predicate)`` makes matching
    calls raise LedgerError.
    """

    def __init__(self):
        self.calls = []
        self.tasks = {}
        self.links = []
        self.attachments = {}
        self.comments = {}
        self.remote_files = {}
        self.blobs = {}
        self._failures = {}
        self._lock = threading.Lock()
        self._next_id = 0

    def fail_on(self, method, predicate=lambda *args: True):
        self._failures[method] = predicate

    def _record(self, method, *args):
        with self._lock:
            self.calls.append((method, *args))
        predicate = self._failures.get(method)
        if predicate is not None and predicate(*args):
            raise LedgerError(f"{method} failed", status_code=500)

    def call_names(self):
        return [call[0] for call in self.calls]

    def create_task(self, name, status="in progress"):
        self._record("create_task", name, status)
        with self._lock:
            self._next_id += 1
            task_id = f"task-{self._next_id}"
            self.tasks[task_id] = {"name": name, "status": status}
        return task_id

    def link_task(self, parent_id, child_id):
        self._record("link_task", parent_id, child_id)
        self.links.append((parent_id, child_id))

    def attach_file(self, task_id, path):
        path = Path(path)
        self._record("attach_file", task_id, path.name)
        data = path.read_bytes()
        with self._lock:
            self.attachments.setdefault(task_id, {})[path.name] = data

    def set_status(self, task_id, status):
        self._record("set_status", task_id, status)
        self.tasks.setdefault(task_id, {})["status"] = status

    def post_comment(self, task_id, text):
        self._record("post_comment", task_id, text)
        self.comments.setdefault(task_id, []).append(text)

    def add_remote_file(self, task_id, name, data):
        url = f"https://files.example.com/{task_id}/{name}"
        self.remote_files.setdefault(task_id, []).append(Attachment(url=url, title=name))
        self.blobs[url] = data

    def list_attachments(self, task_id):
        self._record("list_attachments", task_id)
        return list(self.remote_files.get(task_id, []))

    def download(self, attachment, directory):
        self._record("download", attachment.url)
        target = Path(directory) / attachment.file_name
        target.write_bytes(self.blobs[attachment.url])
        return target


@pytest.fixture
def ledger_cls():
    """The fake ledger class, for tests that subclass it."""
    return FakeLedger


@pytest.fixture
def ledger():
    """A fresh fake ledger."""
    return FakeLedger()


@pytest.fixture
def upload_pool():
    """Upload pool with the reference concurrency of three."""
    pool = ThreadPoolExecutor(max_workers=3, thread_name_prefix="test-upload")
    yield pool
    pool.shutdown(wait=True, cancel_futures=True)


@pytest.fixture
def backup_root(tmp_path):
    """Watch root containing one backup directory."""
    root = tmp_path / "backups"
    (root / "backup_86c1x2y_example_com").mkdir(parents=True)
    return root


@pytest.fixture
def backup_file(backup_root):
    """Factory writing a backup archive of a given size."""

    def _make(size, name="site.zip", dir_name="backup_86c1x2y_example_com"):
        directory = backup_root / dir_name
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / name
        path.write_bytes(bytes(i % 251 for i in range(size)))
        return path

    return _make


@pytest.fixture
def journal(tmp_path):
    """Enable the transaction journal for one test."""
    log_path = tmp_path / "journal" / "transactions.log"
    set_transaction_log(log_path)
    yield log_path
    set_transaction_log(None)


@pytest.fixture
def tmp_config_dir(tmp_path):
    """Create a temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def sample_config_toml(tmp_path):
    """Return a sample valid TOML configuration string."""
    return f"""
[global]
temp_dir = "{tmp_path / 'temp'}"
transaction_log = "{tmp_path / 'transactions.log'}"

[watch]
root = "{tmp_path}"
extensions = [".zip", ".daf", "tar.gz"]
poll_interval = 5
max_attempts = 10
workers = 2

[transfer]
part_size = "100M"
upload_workers = 5
shutdown_grace = 15

[ledger]
api_url = "https://ledger.example.com/api/v2/"
api_key = "pk_test"
auth_scheme = "Bearer"
list_id = "901"
link_field_id = "field-1"
timeout = 30

[reassembly]
base_url = "https://files.example.com/temp/"
ttl = 600
post_comment = false
"""


@pytest.fixture
def minimal_config_toml():
    """Return a minimal valid TOML configuration string."""
    return """
[ledger]
api_key = "pk_test"
list_id = "901"
link_field_id = "field-1"
"""


@pytest.fixture
def config_file(tmp_config_dir, sample_config_toml):
    """Create a temporary config file with sample content."""
    config_path = tmp_config_dir / "config.toml"
    config_path.write_text(sample_config_toml)
    return config_path


@pytest.fixture
def minimal_config_file(tmp_config_dir, minimal_config_toml):
    """Create a temporary config file with minimal content."""
    config_path = tmp_config_dir / "minimal.toml"
    config_path.write_text(minimal_config_toml)
    return config_path
