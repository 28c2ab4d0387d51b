"""Remote table store contract and its implementations.

Every ledger collection is a flat table of records (dicts) keyed by an ``id`` field. The
contract is deliberately small:

- :meth:`TableStore.select` returns matching records, optionally ordered by one field.
- :meth:`TableStore.insert` appends one or more records and returns them.
- :meth:`TableStore.update` changes fields of the record matching an id.
- :meth:`TableStore.delete` removes the record matching an id.
- :meth:`TableStore.delete_where` removes every record matching the filters.

:class:`SheetsTableStore` keeps each collection in its own worksheet of a Google spreadsheet,
with the field names in the header row. :class:`MemoryTableStore` keeps everything in
process memory.

All methods are blocking and are meant to be called through a
:class:`FinTrack.core.service.TaskRunner`.
"""
import copy
import enum
import logging
import socket
import ssl
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import pandas as pd
from googleapiclient.errors import HttpError

from ..status import status

Record = Dict[str, Any]
Filters = Dict[str, Any]


def idx_to_col(idx: int) -> str:
    """Convert zero-based column index to spreadsheet letter(s).

    Args:
        idx: The zero-based column index.

    Returns:
        The spreadsheet column letter(s) (e.g., A, B, AA).
    """
    letters = ''
    while idx >= 0:
        letters = chr((idx % 26) + ord('A')) + letters
        idx = idx // 26 - 1
    return letters


def _as_records(records: Union[Record, Iterable[Record]]) -> List[Record]:
    if isinstance(records, dict):
        return [records]
    return list(records)


class TableStore:
    """Interface of a remote table store."""

    def select(self, collection: str, filters: Optional[Filters] = None,
               order_by: Optional[str] = None, descending: bool = False) -> List[Record]:
        raise NotImplementedError

    def insert(self, collection: str, records: Union[Record, Iterable[Record]]) -> List[Record]:
        raise NotImplementedError

    def update(self, collection: str, fields: Record, match_id: str) -> None:
        raise NotImplementedError

    def delete(self, collection: str, match_id: str) -> None:
        raise NotImplementedError

    def delete_where(self, collection: str, filters: Filters) -> int:
        raise NotImplementedError


class MemoryTableStore(TableStore):
    """Thread-safe in-process table store.

    Args:
        collections: Names of the tables that exist. Other names raise
            :class:`status.TableNotFoundException`.
    """

    def __init__(self, collections: Iterable[str]) -> None:
        self._lock = threading.Lock()
        self._tables: Dict[str, List[Record]] = {str(c): [] for c in collections}

    def _table(self, collection: str) -> List[Record]:
        try:
            return self._tables[str(collection)]
        except KeyError:
            raise status.TableNotFoundException(f'Table "{collection}" does not exist.') from None

    @staticmethod
    def _matches(record: Record, filters: Optional[Filters]) -> bool:
        return all(record.get(k) == v for k, v in (filters or {}).items())

    def select(self, collection: str, filters: Optional[Filters] = None,
               order_by: Optional[str] = None, descending: bool = False) -> List[Record]:
        with self._lock:
            rows = [copy.deepcopy(r) for r in self._table(collection) if self._matches(r, filters)]

        if order_by:
            present = [r for r in rows if r.get(order_by) is not None]
            missing = [r for r in rows if r.get(order_by) is None]
            present.sort(key=lambda r: r[order_by], reverse=descending)
            rows = present + missing
        return rows

    def insert(self, collection: str, records: Union[Record, Iterable[Record]]) -> List[Record]:
        records = [copy.deepcopy(r) for r in _as_records(records)]
        with self._lock:
            table = self._table(collection)
            for record in records:
                if not record.get('id'):
                    raise ValueError(f'Cannot insert a record without an id into "{collection}".')
            table.extend(copy.deepcopy(records))
        return records

    def update(self, collection: str, fields: Record, match_id: str) -> None:
        with self._lock:
            record = next((r for r in self._table(collection) if r.get('id') == match_id), None)
            if record is None:
                raise status.RecordNotFoundException(f'No record "{match_id}" in "{collection}".')
            record.update(copy.deepcopy(fields))

    def delete(self, collection: str, match_id: str) -> None:
        with self._lock:
            table = self._table(collection)
            for idx, record in enumerate(table):
                if record.get('id') == match_id:
                    del table[idx]
                    return
        raise status.RecordNotFoundException(f'No record "{match_id}" in "{collection}".')

    def delete_where(self, collection: str, filters: Filters) -> int:
        with self._lock:
            table = self._table(collection)
            kept = [r for r in table if not self._matches(r, filters)]
            removed = len(table) - len(kept)
            table[:] = kept
        return removed


def _to_cell(value: Any) -> Any:
    """Convert a record value to a cell value written with the RAW input option."""
    if value is None:
        return ''
    if isinstance(value, enum.Enum):
        return value.value
    return value


def _from_cell(value: Any) -> Any:
    if value is None or value == '':
        return None
    if isinstance(value, float) and pd.isna(value):
        return None
    return value


class SheetsTableStore(TableStore):
    """Table store backed by a Google spreadsheet, one worksheet per collection.

    Row positions shift when rows are deleted, so operations on the spreadsheet run one at a
    time.

    Args:
        service_factory: Callable returning a Sheets API resource. Defaults to
            :func:`FinTrack.core.service.get_service`.
        spreadsheet_id: Spreadsheet to use. Defaults to ``spreadsheet.id`` in the settings.
    """

    def __init__(self, service_factory: Optional[Callable[[], Any]] = None,
                 spreadsheet_id: Optional[str] = None) -> None:
        if service_factory is None:
            from .service import get_service
            service_factory = get_service

        self._service_factory = service_factory
        self._spreadsheet_id = spreadsheet_id
        self._lock = threading.RLock()
        self._sheet_ids: Dict[str, int] = {}

    @property
    def spreadsheet_id(self) -> str:
        if self._spreadsheet_id:
            return self._spreadsheet_id

        from ..settings import lib
        spreadsheet_id = lib.settings.get_section('spreadsheet').get('id', None)
        if not spreadsheet_id:
            raise status.SpreadsheetIdNotConfiguredException
        return spreadsheet_id

    def _execute(self, request: Any) -> Dict[str, Any]:
        try:
            return request.execute() or {}
        except HttpError as ex:
            stat: Optional[int] = ex.resp.status if ex.resp else None
            if stat == 403:
                raise status.ServiceUnavailableException(
                    f'Access denied (HTTP 403) for spreadsheet "{self.spreadsheet_id}". '
                    'Please share the sheet with your authenticated Google account.'
                ) from ex
            if stat == 404:
                raise status.ServiceUnavailableException(
                    f'Spreadsheet "{self.spreadsheet_id}" not found (HTTP 404).'
                ) from ex
            raise status.ServiceUnavailableException(
                f'Error accessing spreadsheet "{self.spreadsheet_id}": {ex}'
            ) from ex
        except socket.timeout as ex:
            raise status.ServiceUnavailableException(f'Timeout error: {ex}') from ex
        except ssl.SSLError as ex:
            raise status.ServiceUnavailableException(f'SSL error: {ex}') from ex

    def _sheet_id(self, service: Any, collection: str) -> int:
        """Return the numeric id of the worksheet backing ``collection``.

        Raises:
            status.TableNotFoundException: If the spreadsheet has no such worksheet.
        """
        if collection not in self._sheet_ids:
            result = self._execute(service.spreadsheets().get(
                spreadsheetId=self.spreadsheet_id,
                fields='sheets(properties(sheetId,title))'
            ))
            self._sheet_ids = {
                s['properties']['title']: s['properties']['sheetId']
                for s in result.get('sheets', [])
                if 'title' in s.get('properties', {})
            }
        if collection not in self._sheet_ids:
            raise status.TableNotFoundException(
                f'Worksheet "{collection}" not found in spreadsheet "{self.spreadsheet_id}".')
        return self._sheet_ids[collection]

    def _read_frame(self, service: Any, collection: str) -> pd.DataFrame:
        """Read the whole worksheet into a DataFrame.

        The ``_row`` column holds the 1-based sheet row of each record.
        """
        self._sheet_id(service, collection)

        batch_result = self._execute(service.spreadsheets().values().batchGet(
            spreadsheetId=self.spreadsheet_id,
            ranges=[collection],
            valueRenderOption='UNFORMATTED_VALUE',
            fields='valueRanges(values)'
        ))

        data_rows: List[List[Any]] = []
        for vr in batch_result.get('valueRanges', []):
            values: List[List[Any]] = vr.get('values', [])
            if values:
                data_rows.extend(values)

        header: List[str] = [str(c) for c in data_rows.pop(0)] if data_rows else []
        width = len(header)
        # The API omits trailing empty cells
        rows = [(r + [None] * width)[:width] for r in data_rows]

        df = pd.DataFrame(rows, columns=header, dtype=object)
        df['_row'] = range(2, len(rows) + 2)
        logging.debug(f'Read {df.shape[0]} rows x {width} columns from "{collection}".')
        return df

    @staticmethod
    def _filter(df: pd.DataFrame, filters: Optional[Filters]) -> pd.DataFrame:
        for field, value in (filters or {}).items():
            if field not in df.columns:
                return df.iloc[0:0]
            mask = df[field].map(lambda v: v is not None and str(v) == str(_to_cell(value)))
            df = df.loc[mask.astype(bool)]
        return df

    @staticmethod
    def _to_records(df: pd.DataFrame) -> List[Record]:
        rows = df.drop(columns=['_row']).to_dict('records')
        return [{k: _from_cell(v) for k, v in r.items()} for r in rows]

    def select(self, collection: str, filters: Optional[Filters] = None,
               order_by: Optional[str] = None, descending: bool = False) -> List[Record]:
        with self._lock:
            service = self._service_factory()
            df = self._filter(self._read_frame(service, collection), filters)

        if order_by and order_by in df.columns and not df.empty:
            df = df.sort_values(
                by=order_by,
                ascending=not descending,
                key=lambda s: s.map(lambda v: '' if v is None else str(v)),
                kind='stable',
            )
        return self._to_records(df)

    def _ensure_header(self, service: Any, collection: str, records: List[Record]) -> List[str]:
        result = self._execute(service.spreadsheets().values().get(
            spreadsheetId=self.spreadsheet_id,
            range=f'{collection}!1:1',
            valueRenderOption='UNFORMATTED_VALUE',
        ))
        values = result.get('values', [])
        if values and values[0]:
            return [str(c) for c in values[0]]

        header: List[str] = []
        for record in records:
            header.extend(k for k in record if k not in header)
        logging.debug(f'Writing header row to empty worksheet "{collection}": {header}')
        self._execute(service.spreadsheets().values().update(
            spreadsheetId=self.spreadsheet_id,
            range=f'{collection}!A1',
            valueInputOption='RAW',
            body={'values': [header]},
        ))
        return header

    def insert(self, collection: str, records: Union[Record, Iterable[Record]]) -> List[Record]:
        records = _as_records(records)
        if not records:
            return []

        with self._lock:
            service = self._service_factory()
            self._sheet_id(service, collection)
            header = self._ensure_header(service, collection, records)

            unknown = {k for r in records for k in r} - set(header)
            if unknown:
                logging.warning(f'Fields {sorted(unknown)} have no column in "{collection}" and are not stored.')

            rows = [[_to_cell(r.get(h)) for h in header] for r in records]
            self._execute(service.spreadsheets().values().append(
                spreadsheetId=self.spreadsheet_id,
                range=f'{collection}!A1',
                valueInputOption='RAW',
                insertDataOption='INSERT_ROWS',
                body={'values': rows},
            ))
        logging.debug(f'Appended {len(rows)} row(s) to "{collection}".')
        return [{h: r.get(h) for h in header} for r in records]

    def _find_row(self, df: pd.DataFrame, collection: str, match_id: str) -> int:
        if 'id' not in df.columns:
            raise status.TableNotFoundException(f'Worksheet "{collection}" has no "id" column.')
        rows = self._filter(df, {'id': match_id})
        if rows.empty:
            raise status.RecordNotFoundException(f'No record "{match_id}" in "{collection}".')
        return int(rows['_row'].iloc[0])

    def update(self, collection: str, fields: Record, match_id: str) -> None:
        with self._lock:
            service = self._service_factory()
            df = self._read_frame(service, collection)
            row = self._find_row(df, collection, match_id)

            header = [c for c in df.columns if c != '_row']
            data = []
            for field, value in fields.items():
                if field not in header:
                    logging.warning(f'Field "{field}" has no column in "{collection}", skipping.')
                    continue
                col = idx_to_col(header.index(field))
                data.append({'range': f'{collection}!{col}{row}', 'values': [[_to_cell(value)]]})

            if not data:
                return
            self._execute(service.spreadsheets().values().batchUpdate(
                spreadsheetId=self.spreadsheet_id,
                body={'valueInputOption': 'RAW', 'data': data},
            ))
        logging.debug(f'Updated {len(data)} cell(s) of "{match_id}" in "{collection}".')

    def _delete_rows(self, service: Any, collection: str, rows: List[int]) -> None:
        sheet_id = self._sheet_id(service, collection)
        # Bottom-up, so earlier deletions do not move the remaining rows
        requests = [
            {
                'deleteDimension': {
                    'range': {
                        'sheetId': sheet_id,
                        'dimension': 'ROWS',
                        'startIndex': row - 1,
                        'endIndex': row,
                    }
                }
            }
            for row in sorted(rows, reverse=True)
        ]
        self._execute(service.spreadsheets().batchUpdate(
            spreadsheetId=self.spreadsheet_id,
            body={'requests': requests},
        ))

    def delete(self, collection: str, match_id: str) -> None:
        with self._lock:
            service = self._service_factory()
            df = self._read_frame(service, collection)
            row = self._find_row(df, collection, match_id)
            self._delete_rows(service, collection, [row])
        logging.debug(f'Deleted "{match_id}" from "{collection}".')

    def delete_where(self, collection: str, filters: Filters) -> int:
        with self._lock:
            service = self._service_factory()
            df = self._filter(self._read_frame(service, collection), filters)
            rows = [int(r) for r in df['_row']]
            if rows:
                self._delete_rows(service, collection, rows)
        logging.debug(f'Deleted {len(rows)} row(s) from "{collection}".')
        return len(rows)
