"""
CSV helpers for submission exports.

Shared by the export service: JSON payload decoding (encrypted first, plain
fallback), dynamic-key discovery, header humanizing, and the default row
formatter that turns one submission into one CSV record.
"""

from __future__ import annotations

import csv
import io
import json
import logging
from collections.abc import Callable, Iterable
from typing import Any, Protocol

from src.core.encryption import EncryptionService

logger = logging.getLogger(__name__)

CSV_DELIMITER = ";"
UTF8_BOM = b"\xef\xbb\xbf"

FIXED_HEADERS = [
    "ID",
    "Form",
    "User ID",
    "Submission Date",
    "E-mail",
    "User IP",
    "CPF",
    "RF",
    "Auth Code",
    "Token",
    "Consent Given",
    "Consent Date",
    "Consent IP",
    "Consent Text",
    "Status",
]

EDIT_HEADERS = ["Was Edited", "Edit Date", "Edited By"]


class RowFormatter(Protocol):
    """Turns one dataset row into one CSV record."""

    def headers(self, dynamic_keys: list[str], include_edit_columns: bool) -> list[str]: ...

    def form_title(self, form_id: int) -> str: ...

    def format(self, row: Any, dynamic_keys: list[str], include_edit_columns: bool) -> list[Any]: ...


def decode_json_field(
    row: Any,
    encryption: EncryptionService | None = None,
    plain_key: str = "data",
    encrypted_key: str = "data_encrypted",
) -> dict:
    """Decode a row's JSON payload, preferring the encrypted column."""
    raw = None
    encrypted = getattr(row, encrypted_key, None)
    if encrypted and encryption is not None:
        raw = encryption.decrypt(encrypted)
    if raw is None:
        raw = getattr(row, plain_key, None)
    if not raw:
        return {}
    try:
        decoded = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Row %s has an undecodable %s payload", getattr(row, "id", "?"), plain_key)
        return {}
    return decoded if isinstance(decoded, dict) else {}


def extract_dynamic_keys(rows: Iterable[Any], encryption: EncryptionService | None = None) -> set[str]:
    keys: set[str] = set()
    for row in rows:
        keys.update(str(k) for k in decode_json_field(row, encryption))
    return keys


def build_dynamic_headers(keys: Iterable[str]) -> list[str]:
    """``first_name`` / ``first-name`` -> ``First Name``."""
    return [" ".join(w.capitalize() for w in k.replace("_", " ").replace("-", " ").split()) or k for k in keys]


def to_csv_bytes(records: Iterable[Iterable[Any]]) -> bytes:
    """Encode records as semicolon-separated UTF-8 CSV lines."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=CSV_DELIMITER, lineterminator="\n")
    for record in records:
        writer.writerow(["" if v is None else v for v in record])
    return buffer.getvalue().encode("utf-8", errors="replace")


class SubmissionRowFormatter:
    """
    Default formatter for submission rows.

    Args:
        encryption: Used to decrypt ``*_encrypted`` columns; plaintext is used
            when it is None or decryption fails
        form_title: Resolves a form id to a display title
        user_name: Resolves an editor's user id to a display name
    """

    def __init__(
        self,
        encryption: EncryptionService | None = None,
        form_title: Callable[[int], str | None] | None = None,
        user_name: Callable[[int], str | None] | None = None,
    ) -> None:
        self.encryption = encryption
        self._form_title = form_title or (lambda form_id: f"Form #{form_id}")
        self._user_name = user_name or (lambda user_id: None)
        self._title_cache: dict[int, str] = {}

    def headers(self, dynamic_keys: list[str], include_edit_columns: bool) -> list[str]:
        headers = list(FIXED_HEADERS)
        if include_edit_columns:
            headers.extend(EDIT_HEADERS)
        headers.extend(build_dynamic_headers(dynamic_keys))
        return headers

    def form_title(self, form_id: int) -> str:
        if form_id not in self._title_cache:
            self._title_cache[form_id] = self._form_title(form_id) or "(Deleted)"
        return self._title_cache[form_id]

    def _field(self, row: Any, name: str) -> str:
        if self.encryption is not None:
            return self.encryption.decrypt_field(row, name)
        return getattr(row, name, None) or ""

    def format(self, row: Any, dynamic_keys: list[str], include_edit_columns: bool) -> list[Any]:
        user_ip = self._field(row, "user_ip")
        consent = ""
        if row.consent_given is not None:
            consent = "Yes" if row.consent_given else "No"

        line: list[Any] = [
            row.id,
            self.form_title(row.form_id),
            row.user_id or "",
            row.submission_date,
            self._field(row, "email"),
            user_ip,
            self._field(row, "cpf"),
            self._field(row, "rf"),
            row.auth_code or "",
            row.magic_token or "",
            consent,
            row.consent_date or "",
            user_ip,  # consent IP
            row.consent_text or "",
            row.status or "publish",
        ]

        if include_edit_columns:
            was_edited = edit_date = edited_by = ""
            if row.edited_at:
                was_edited = "Yes"
                edit_date = row.edited_at
                if row.edited_by:
                    edited_by = self._user_name(row.edited_by) or f"ID: {row.edited_by}"
            line.extend([was_edited, edit_date, edited_by])

        data = decode_json_field(row, self.encryption)
        for key in dynamic_keys:
            value = data.get(key, "")
            if isinstance(value, list):
                value = ", ".join(str(v) for v in value)
            elif isinstance(value, dict):
                value = json.dumps(value, ensure_ascii=False)
            line.append(value)

        return line
