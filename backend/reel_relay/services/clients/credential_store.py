"""
Persisted account credentials in the .env file.

The only shared mutable resource in the process. Writers serialize through
a lock file holding the owner's pid; a lock whose owner is gone is stale
and reclaimed. Each update backs the file up, writes a temp copy and
renames it into place, restoring the backup if anything fails.
"""

import asyncio
import json
import logging
import os
import re
import shutil
import time
from pathlib import Path
from typing import Iterable

from pydantic import BaseModel

from reel_relay.models.schemas import InstagramAccount, YouTubeAccount

logger = logging.getLogger(__name__)

INSTAGRAM_KEY = "INSTAGRAM_ACCOUNTS"
YOUTUBE_KEY = "YOUTUBE_ACCOUNTS"

LOCK_WAIT_SECONDS = 10.0
LOCK_POLL_SECONDS = 0.1

# Persisted field -> max length
ALLOWED_FIELDS = {
    "name": 100,
    "id": 100,
    "token": 500,
    "accessToken": 500,
    "refreshToken": 500,
}

KEY_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]*$")


class CredentialStoreError(Exception):
    """Raised when credentials can't be persisted (lock timeout, bad payload, I/O)."""

    pass


def is_process_alive(pid: int) -> bool:
    """Check whether a process with this pid exists."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by another user
        return True
    return True


def sanitize_accounts(accounts: Iterable[dict]) -> list[dict]:
    """Keep only allowlisted fields, stringified and length-capped."""
    sanitized = []
    for account in accounts:
        entry = {}
        for field, limit in ALLOWED_FIELDS.items():
            value = account.get(field)
            if value:
                entry[field] = str(value)[:limit]
        sanitized.append(entry)
    return sanitized


def serialize_account(account: BaseModel | dict) -> dict:
    if isinstance(account, BaseModel):
        return account.model_dump(by_alias=True)
    return dict(account)


class CredentialStore:
    """
    Safe updater for account records in a key=value env file.

    Example:
        store = CredentialStore(Path(".env"))
        await store.update_youtube_accounts(accounts)
    """

    def __init__(
        self,
        env_file: Path,
        lock_wait: float = LOCK_WAIT_SECONDS,
        lock_poll: float = LOCK_POLL_SECONDS,
    ):
        self.env_file = Path(env_file)
        self.lock_file = self.env_file.with_name(self.env_file.name + ".lock")
        self.backup_file = self.env_file.with_name(self.env_file.name + ".backup")
        self.temp_file = self.env_file.with_name(self.env_file.name + ".tmp")
        self.lock_wait = lock_wait
        self.lock_poll = lock_poll

    # ═══════════════════════════════════════════════════════════════════
    # Locking
    # ═══════════════════════════════════════════════════════════════════

    def _try_lock(self) -> bool:
        try:
            fd = os.open(self.lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w") as f:
            f.write(str(os.getpid()))
        return True

    def _reclaim_if_stale(self) -> None:
        try:
            owner = int(self.lock_file.read_text().strip())
        except FileNotFoundError:
            return
        except ValueError:
            logger.warning("Unreadable credential lock, removing it")
            self.lock_file.unlink(missing_ok=True)
            return

        if not is_process_alive(owner):
            logger.warning(f"Removing stale credential lock held by dead process {owner}")
            self.lock_file.unlink(missing_ok=True)

    async def acquire_lock(self) -> None:
        """
        Take the lock file, waiting up to lock_wait seconds.

        Raises:
            CredentialStoreError: On timeout
        """
        deadline = time.monotonic() + self.lock_wait
        while time.monotonic() < deadline:
            if self._try_lock():
                return
            self._reclaim_if_stale()
            if self._try_lock():
                return
            await asyncio.sleep(self.lock_poll)
        raise CredentialStoreError(f"Could not acquire lock on {self.env_file.name} (timeout)")

    def release_lock(self) -> None:
        try:
            self.lock_file.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not release credential lock: {e}")

    # ═══════════════════════════════════════════════════════════════════
    # Updates
    # ═══════════════════════════════════════════════════════════════════

    def _write(self, key: str, payload: str) -> None:
        content = self.env_file.read_text(encoding="utf-8") if self.env_file.exists() else ""
        line = f"{key}={payload}"
        pattern = re.compile(rf"^{re.escape(key)}=.*$", re.MULTILINE)

        if pattern.search(content):
            content = pattern.sub(lambda _: line, content, count=1)
        else:
            if content and not content.endswith("\n"):
                content += "\n"
            content += f"{line}\n"

        self.temp_file.write_text(content, encoding="utf-8")
        os.replace(self.temp_file, self.env_file)

    async def update(self, key: str, accounts: Iterable[BaseModel | dict]) -> None:
        """
        Replace one key's JSON account list in the env file.

        Args:
            key: Env variable name (e.g. YOUTUBE_ACCOUNTS)
            accounts: Account models or dicts

        Raises:
            CredentialStoreError: On invalid input, lock timeout or write failure
        """
        if not key or not KEY_PATTERN.match(key):
            raise CredentialStoreError(f"Invalid key parameter: {key!r}")

        payload = json.dumps(sanitize_accounts(serialize_account(a) for a in accounts))
        if not isinstance(json.loads(payload), list):
            raise CredentialStoreError("Invalid JSON: expected array")

        await self.acquire_lock()
        backed_up = False
        try:
            if self.env_file.exists():
                shutil.copyfile(self.env_file, self.backup_file)
                backed_up = True
            self._write(key, payload)
        except OSError as e:
            logger.error(f"Error updating {self.env_file.name}: {e}")
            if backed_up:
                self._restore_backup()
            raise CredentialStoreError(f"Failed to update {key}: {e}") from e
        finally:
            self.temp_file.unlink(missing_ok=True)
            self.release_lock()

        if backed_up:
            self.backup_file.unlink(missing_ok=True)
        logger.info(f"{self.env_file.name} updated: {key}")

    def _restore_backup(self) -> None:
        try:
            shutil.copyfile(self.backup_file, self.env_file)
            self.backup_file.unlink(missing_ok=True)
            logger.info("Backup restored successfully")
        except OSError as e:
            logger.error(f"Error restoring backup: {e}")

    async def update_instagram_accounts(self, accounts: Iterable[InstagramAccount]) -> None:
        await self.update(INSTAGRAM_KEY, accounts)

    async def update_youtube_accounts(self, accounts: Iterable[YouTubeAccount]) -> None:
        await self.update(YOUTUBE_KEY, accounts)
