"""Google Sheets client used to pull, push and highlight inventory rows.

This module is the only place that talks to the Sheets API.  It converts
between letter-keyed rows (``{"A": ..., "B": ...}``) and the positional value
arrays the API expects, and it exposes a small failure surface: every public
method raises a subclass of :class:`SheetsClientError`.

Two push modes are supported:

* selective: every row carries ``_rowIndex`` (its absolute, 0-based sheet
  position) and is written back to exactly that row with one
  ``values.batchUpdate`` request, leaving other rows untouched;
* full: rows without ``_rowIndex`` overwrite the worksheet positionally from
  ``A1``.

Rate limit (429) and server (5xx) responses are retried with exponential
backoff.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from nova.columns import ROW_INDEX_KEY, SheetRow, column_letter, column_number, is_cell_key
from nova.google_credentials import CredentialsFileInvalidError, load_service_account_data
from nova.header_resolver import to_sheet_rows

logger = logging.getLogger(__name__)

SCOPES: Sequence[str] = ("https://www.googleapis.com/auth/spreadsheets",)

DEFAULT_COLUMNS = 52
BACKOFF_SCHEDULE = (1, 2, 4, 8, 16)
MAX_RETRY_ATTEMPTS = len(BACKOFF_SCHEDULE)
RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})
VALUE_INPUT_OPTION = "USER_ENTERED"
HIGHLIGHT_YELLOW: Mapping[str, float] = {"red": 1.0, "green": 1.0, "blue": 0.0}


class SheetsClientError(RuntimeError):
    """Base error raised for Sheets API failures."""


class SheetsCredentialsError(SheetsClientError):
    """Raised when the provided credential file is invalid or missing."""


class SheetsApiResponseError(SheetsClientError):
    """Raised when the Google API returns an error response."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class WorksheetNotFoundError(SheetsClientError):
    """Raised when a worksheet title does not exist in the spreadsheet."""


def _normalise_title(title: str) -> str:
    """Return a worksheet title quoted according to A1 notation rules."""

    safe = (title or "").strip()
    if not safe:
        raise SheetsClientError("Worksheet title must be configured in settings.")
    safe = safe.replace("'", "''")
    return f"'{safe}'"


def a1_full_column_range(title: str, *, columns: int = DEFAULT_COLUMNS) -> str:
    """Return an A1 range spanning all rows for ``columns`` columns."""

    return f"{_normalise_title(title)}!A1:{column_letter(max(1, columns))}"


def a1_row_range(title: str, row_number: int, *, columns: int) -> str:
    """Return an A1 range covering sheet row ``row_number`` (1-based)."""

    if row_number < 1:
        raise ValueError("Row number must be >= 1")
    last_column = column_letter(max(1, columns))
    return f"{_normalise_title(title)}!A{row_number}:{last_column}{row_number}"


def _http_status(exc: HttpError) -> Optional[int]:
    status = getattr(exc, "status_code", None)
    if status is None:
        status = getattr(getattr(exc, "resp", None), "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def _call_with_retry(
    func: Callable[[], Any],
    description: str,
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    """Execute ``func`` applying exponential backoff for retriable errors."""

    attempt = 0
    while True:
        try:
            return func()
        except HttpError as exc:
            status = _http_status(exc)
            if status not in RETRYABLE_STATUSES or attempt >= MAX_RETRY_ATTEMPTS - 1:
                raise SheetsApiResponseError(
                    f"Sheets API {description} failed ({status}): {exc}", status=status
                ) from exc
            delay = BACKOFF_SCHEDULE[min(attempt, len(BACKOFF_SCHEDULE) - 1)]
            attempt += 1
            logger.warning(
                "Sheets API %s error (%s). Retrying in %ss (%d/%d)",
                description,
                status,
                delay,
                attempt,
                MAX_RETRY_ATTEMPTS,
            )
            sleep(delay)


def _build_service(path: Path):
    try:
        payload = load_service_account_data(path)
    except CredentialsFileInvalidError as exc:
        raise SheetsCredentialsError(str(exc)) from exc

    try:
        credentials = service_account.Credentials.from_service_account_info(payload, scopes=SCOPES)
    except (ValueError, KeyError) as exc:
        raise SheetsCredentialsError(str(exc)) from exc

    try:
        return build("sheets", "v4", credentials=credentials, cache_discovery=False)
    except HttpError as exc:  # pragma: no cover - discovery document fetch
        raise SheetsApiResponseError(str(exc), status=_http_status(exc)) from exc


def _row_width(row: Mapping[str, object]) -> int:
    letters = [key for key in row.keys() if is_cell_key(key)]
    return max((column_number(letter) for letter in letters), default=0)


def _row_values(row: Mapping[str, object], width: int) -> List[str]:
    return [str(row.get(column_letter(index), "") or "") for index in range(1, width + 1)]


class GoogleSheetsClient:
    """Concrete helper that speaks to Google Sheets using the REST API."""

    def __init__(
        self,
        spreadsheet_id: str,
        credential_path: Optional[Path] = None,
        *,
        service=None,
        columns: int = DEFAULT_COLUMNS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not (spreadsheet_id or "").strip():
            raise SheetsClientError("Spreadsheet ID must be configured in settings.")
        self._spreadsheet_id = spreadsheet_id.strip()
        self._credential_path = credential_path
        if service is None:
            if credential_path is None:
                raise SheetsCredentialsError("A service account credentials file is required.")
            service = _build_service(Path(credential_path))
        self._service = service
        self._columns = columns
        self._sleep = sleep
        self._sheet_ids: Dict[str, int] = {}

    @property
    def spreadsheet_id(self) -> str:
        return self._spreadsheet_id

    def _execute(self, request, description: str) -> Dict[str, Any]:
        result = _call_with_retry(request.execute, description, self._sleep)
        return result or {}

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------
    def fetch_rows(self, title: str) -> List[SheetRow]:
        """Return every row of ``title`` as letter-keyed rows.

        Banner and header rows are included and nothing is dropped, so list
        position ``n`` is sheet row ``n + 1``.
        """

        request = (
            self._service.spreadsheets()
            .values()
            .get(
                spreadsheetId=self._spreadsheet_id,
                range=a1_full_column_range(title, columns=self._columns),
                majorDimension="ROWS",
            )
        )
        response = self._execute(request, "values.get")
        values: Sequence[Sequence[object]] = response.get("values", [])  # type: ignore[assignment]
        rows = to_sheet_rows([list(row) for row in values])
        logger.info("Fetched %s rows from %s", len(rows), title)
        return rows

    def get_sheet_id(self, title: str) -> int:
        """Return the numeric ``sheetId`` of the worksheet named ``title``."""

        wanted = (title or "").strip()
        if wanted in self._sheet_ids:
            return self._sheet_ids[wanted]
        request = self._service.spreadsheets().get(
            spreadsheetId=self._spreadsheet_id,
            fields="sheets.properties",
        )
        response = self._execute(request, "spreadsheets.get")
        for sheet in response.get("sheets", []):
            properties = sheet.get("properties", {})
            self._sheet_ids[str(properties.get("title", ""))] = int(properties.get("sheetId", 0))
        if wanted not in self._sheet_ids:
            raise WorksheetNotFoundError(f"Worksheet '{wanted}' was not found in the spreadsheet.")
        return self._sheet_ids[wanted]

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------
    def push_rows(self, rows: Sequence[Mapping[str, object]], title: str) -> int:
        """Write ``rows`` back to ``title`` and return the number of rows sent."""

        if not rows:
            return 0
        if all(ROW_INDEX_KEY in row for row in rows):
            return self.update_selective_rows(rows, title)
        return self.update_full(rows, title)

    def update_selective_rows(self, rows: Sequence[Mapping[str, object]], title: str) -> int:
        """Write each row at its own ``_rowIndex`` without touching other rows."""

        data: List[Dict[str, object]] = []
        for row in rows:
            try:
                absolute_index = int(str(row[ROW_INDEX_KEY]))
            except (KeyError, TypeError, ValueError) as exc:
                raise SheetsClientError(f"Row is missing a valid {ROW_INDEX_KEY}: {row!r}") from exc
            if absolute_index < 0:
                raise SheetsClientError(f"Invalid {ROW_INDEX_KEY} {absolute_index}")
            width = max(1, _row_width(row))
            data.append(
                {
                    "range": a1_row_range(title, absolute_index + 1, columns=width),
                    "majorDimension": "ROWS",
                    "values": [_row_values(row, width)],
                }
            )

        body = {"valueInputOption": VALUE_INPUT_OPTION, "data": data}
        request = (
            self._service.spreadsheets()
            .values()
            .batchUpdate(spreadsheetId=self._spreadsheet_id, body=body)
        )
        self._execute(request, "values.batchUpdate")
        logger.info("Pushed %s changed rows to %s", len(data), title)
        return len(data)

    def update_full(self, rows: Sequence[Mapping[str, object]], title: str) -> int:
        """Overwrite ``title`` positionally starting at ``A1``."""

        width = max(1, max((_row_width(row) for row in rows), default=1))
        values = [_row_values(row, width) for row in rows]
        last_column = column_letter(width)
        body = {
            "valueInputOption": VALUE_INPUT_OPTION,
            "data": [
                {
                    "range": f"{_normalise_title(title)}!A1:{last_column}{len(values)}",
                    "majorDimension": "ROWS",
                    "values": values,
                }
            ],
        }
        request = (
            self._service.spreadsheets()
            .values()
            .batchUpdate(spreadsheetId=self._spreadsheet_id, body=body)
        )
        self._execute(request, "values.batchUpdate")
        logger.info("Overwrote %s rows of %s", len(values), title)
        return len(values)

    def highlight_rows(
        self,
        row_indices: Iterable[int],
        title: str,
        color: Mapping[str, float] = HIGHLIGHT_YELLOW,
    ) -> None:
        """Set the background colour of the given absolute (0-based) rows."""

        indices = sorted({int(index) for index in row_indices if int(index) >= 0})
        if not indices:
            return
        sheet_id = self.get_sheet_id(title)
        requests = [
            {
                "repeatCell": {
                    "range": {
                        "sheetId": sheet_id,
                        "startRowIndex": index,
                        "endRowIndex": index + 1,
                    },
                    "cell": {"userEnteredFormat": {"backgroundColor": dict(color)}},
                    "fields": "userEnteredFormat.backgroundColor",
                }
            }
            for index in indices
        ]
        request = self._service.spreadsheets().batchUpdate(
            spreadsheetId=self._spreadsheet_id,
            body={"requests": requests},
        )
        self._execute(request, "spreadsheets.batchUpdate")
        logger.info("Highlighted rows %s on %s", indices, title)


def build_client(spreadsheet_id: str, credential_path: Path) -> GoogleSheetsClient:
    """Factory helper used by higher level modules to construct a client."""

    return GoogleSheetsClient(spreadsheet_id=spreadsheet_id, credential_path=Path(credential_path))


__all__ = [
    "BACKOFF_SCHEDULE",
    "GoogleSheetsClient",
    "HIGHLIGHT_YELLOW",
    "SheetsApiResponseError",
    "SheetsClientError",
    "SheetsCredentialsError",
    "WorksheetNotFoundError",
    "a1_full_column_range",
    "a1_row_range",
    "build_client",
]
