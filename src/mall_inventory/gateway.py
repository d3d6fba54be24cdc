"""Workbook-backed implementation of the external collaborators.

The submission pipeline and the CLI talk to three collaborators: a
transaction sink, an attachment store and a credential validator. This
module implements all three on top of the runtime context so the whole flow
can run against the local master workbook.
"""

from __future__ import annotations

import re
import shutil
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Optional

from . import core_logic, log
from .submission import TransactionRequest, UploadResult


INVALID_LOGIN_MESSAGE = "Invalid email or password"
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class AuthenticatedUser:
    email: str
    name: str
    role: str


@dataclass(frozen=True)
class LoginResult:
    """Answer of a credential check; ``user`` is set only on success."""

    success: bool
    user: Optional[AuthenticatedUser] = None
    message: str = ""


def safe_file_stem(name_hint: str, *, max_length: int = 80) -> str:
    """Reduce ``name_hint`` to characters that are safe in a file name."""

    return _UNSAFE_CHARS.sub("_", name_hint).strip("_")[:max_length]


class WorkbookGateway:
    """Records transactions, stores attachments and checks logins locally."""

    def __init__(self, context: core_logic.RuntimeContext) -> None:
        self.context = context

    async def submit_transaction_record(self, request: TransactionRequest) -> bool:
        """Record ``request``; rule violations are reported as ``False``."""

        try:
            core_logic.record_transaction(self.context, request)
        except (core_logic.BusinessRuleViolation, ValueError) as exc:
            log.warning("Transaction for '%s' rejected: %s", request.item_name, exc)
            return False
        except (KeyError, OSError) as exc:
            log.error("Unable to record transaction for '%s': %s", request.item_name, exc)
            return False
        return True

    async def upload_attachment(self, path: Path, name_hint: str) -> UploadResult:
        """Copy ``path`` into the attachment directory and return its URL."""

        source = Path(path).expanduser()
        if not source.is_file():
            return UploadResult(success=False, error=f"Attachment not found: {source}")

        stamp = datetime.now(UTC).strftime("%Y%m%d%H%M%S")
        stem = safe_file_stem(name_hint) or safe_file_stem(source.stem) or "attachment"
        target_dir = self.context.settings.attachment_dir
        target = target_dir / f"{stamp}_{stem}{source.suffix}"
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)
        except OSError as exc:
            log.error("Unable to store attachment '%s': %s", source, exc)
            return UploadResult(success=False, error=f"File upload failed: {exc}")

        return UploadResult(success=True, file_url=target.resolve().as_uri())

    async def validate_credentials(self, email: str, password: str) -> LoginResult:
        """Check ``email``/``password`` against the ``Users`` sheet."""

        try:
            user = core_logic.get_user(self.context, email)
        except core_logic.MissingReferenceError:
            return LoginResult(success=False, message=INVALID_LOGIN_MESSAGE)

        if not core_logic.verify_password(password.strip(), user.password_hash):
            log.warning("Rejected login for '%s'", user.email)
            return LoginResult(success=False, message=INVALID_LOGIN_MESSAGE)

        log.info("User '%s' logged in", user.email)
        return LoginResult(
            success=True,
            user=AuthenticatedUser(email=user.email, name=user.name, role=user.role),
        )
