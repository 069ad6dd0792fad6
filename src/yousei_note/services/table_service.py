#!/usr/bin/env python3
"""Server side of the action-dispatch protocol.

One sheet per store id holds that store's records as rows of
``[key, value, timestamp, lastModified]`` under a header row. Every request
is answered with an envelope; failures never escape as exceptions.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from dateutil.parser import isoparse
from dateutil.relativedelta import relativedelta

from ..constants import SERVICE_VERSION, SHEET_HEADER, STATUS
from ..errors import ValidationError
from ..models import Record, ledger_key, parse_ledger_key
from ..validators import StoreIdValidator
from .workbook import Sheet, Workbook

logger = logging.getLogger(__name__)

# Days around the one-year-prior date searched by getPreviousYearData
PREVIOUS_YEAR_OFFSETS = (0, -1, 1, -2, 2, -3, 3)

KEY_COL, VALUE_COL, TIMESTAMP_COL, LAST_MODIFIED_COL = range(4)


def _iso(moment: datetime) -> str:
    return moment.isoformat(timespec='milliseconds')


def _parse_date(value: Any, name: str) -> date:
    if not value:
        raise ValidationError(f"{name} is required")
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f"Invalid {name}: {value}")


class RemoteTableService:
    """Routes protocol requests to handlers working on a :class:`Workbook`."""

    def __init__(self, workbook: Workbook, clock: Optional[Callable[[], datetime]] = None):
        """Initialize table service.

        Args:
            workbook: Workbook holding one sheet per store
            clock: Returns the current time (UTC now by default)
        """
        self.workbook = workbook
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._store_ids = StoreIdValidator()
        self.handlers: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
            'ping': self.ping,
            'setItem': self.set_item,
            'getItem': self.get_item,
            'removeItem': self.remove_item,
            'getAllItems': self.get_all_items,
            'getDateRange': self.get_date_range,
            'getPreviousYearData': self.get_previous_year_data,
            'createBackup': self.create_backup,
            'getSyncStatus': self.get_sync_status,
        }

    # Envelopes

    def _envelope(self, status: str, **fields: Any) -> Dict[str, Any]:
        return {'status': status, 'timestamp': _iso(self.clock()), **fields}

    def success(self, data: Any = None) -> Dict[str, Any]:
        return self._envelope(STATUS['SUCCESS'], data=data)

    def error(self, message: str) -> Dict[str, Any]:
        return self._envelope(STATUS['ERROR'], error=message)

    def not_found(self, message: str) -> Dict[str, Any]:
        return self._envelope(STATUS['NOT_FOUND'], message=message)

    def handle(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Dispatch one request on its ``action`` parameter."""
        action = params.get('action')
        if not action:
            return self.success({
                'message': 'Yousei Note table service',
                'version': SERVICE_VERSION,
                'actions': list(self.handlers),
            })

        handler = self.handlers.get(action)
        if handler is None:
            return self.error(f"Unknown action: {action}")

        try:
            return handler(params)
        except (ValidationError, ValueError, KeyError, IndexError) as e:
            logger.warning(f"{action} rejected: {e}")
            return self.error(str(e))
        except Exception as e:
            logger.error(f"{action} failed: {e}", exc_info=True)
            return self.error(f"Internal error: {e}")

    # Sheet helpers

    def _store_id(self, params: Dict[str, Any]) -> str:
        return self._store_ids.validate(params.get('storeId'))

    def _sheet(self, store_id: str) -> Sheet:
        """Return the store's sheet, creating it with a header row on first use."""
        sheet = self.workbook.get_sheet(store_id)
        if sheet is None:
            sheet = self.workbook.insert_sheet(store_id)
            sheet.append_row(SHEET_HEADER)
        return sheet

    @staticmethod
    def _data_rows(sheet: Sheet) -> List[Tuple[int, List[Any]]]:
        """``(row_number, row)`` for every row below the header."""
        return [(number, row) for number, row in enumerate(sheet.get_values(), start=1)
                if number > 1]

    def _find_row(self, sheet: Sheet, key: str) -> Optional[Tuple[int, List[Any]]]:
        for number, row in self._data_rows(sheet):
            if row[KEY_COL] == key:
                return number, row
        return None

    @staticmethod
    def _require(params: Dict[str, Any], name: str) -> Any:
        value = params.get(name)
        if value is None or value == '':
            raise ValidationError(f"{name} is required")
        return value

    @staticmethod
    def _record(row: List[Any]) -> Dict[str, Any]:
        return Record(
            key=row[KEY_COL],
            value=row[VALUE_COL],
            timestamp=row[TIMESTAMP_COL],
            last_modified=row[LAST_MODIFIED_COL],
        ).to_dict()

    # Handlers

    def ping(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return self.success({
            'message': 'pong',
            'version': SERVICE_VERSION,
            'timestamp': _iso(self.clock()),
        })

    def set_item(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Overwrite the key's row in place, or append a new row."""
        store_id = self._store_id(params)
        key = self._require(params, 'key')
        if params.get('value') is None:
            raise ValidationError("value is required")

        last_modified = _iso(self.clock())
        row = [key, params['value'], params.get('timestamp') or last_modified, last_modified]

        sheet = self._sheet(store_id)
        found = self._find_row(sheet, key)
        if found:
            sheet.update_row(found[0], row)
        else:
            sheet.append_row(row)

        logger.debug(f"setItem {store_id}/{key}")
        return self.success({'key': key, 'saved': True, 'timestamp': last_modified})

    def get_item(self, params: Dict[str, Any]) -> Dict[str, Any]:
        store_id = self._store_id(params)
        key = self._require(params, 'key')
        found = self._find_row(self._sheet(store_id), key)
        if not found:
            return self.not_found(f"Key not found: {key}")
        return self.success(found[1][VALUE_COL])

    def remove_item(self, params: Dict[str, Any]) -> Dict[str, Any]:
        store_id = self._store_id(params)
        key = self._require(params, 'key')
        sheet = self._sheet(store_id)
        found = self._find_row(sheet, key)
        if not found:
            return self.not_found(f"Key not found: {key}")
        sheet.delete_row(found[0])
        return self.success({'key': key, 'removed': True})

    def get_all_items(self, params: Dict[str, Any]) -> Dict[str, Any]:
        store_id = self._store_id(params)
        prefix = params.get('prefix') or ''
        return self.success([
            self._record(row)
            for _, row in self._data_rows(self._sheet(store_id))
            if str(row[KEY_COL]).startswith(prefix)
        ])

    def get_date_range(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Ledger records of this store dated within [startDate, endDate]."""
        store_id = self._store_id(params)
        start = _parse_date(params.get('startDate'), 'startDate')
        end = _parse_date(params.get('endDate'), 'endDate')

        matches = []
        for _, row in self._data_rows(self._sheet(store_id)):
            parsed = parse_ledger_key(str(row[KEY_COL]))
            if parsed is None or parsed[0] != store_id:
                continue
            if start <= date.fromisoformat(parsed[1]) <= end:
                matches.append((parsed[1], self._record(row)))

        # Zero-padded ISO dates sort correctly as strings
        matches.sort(key=lambda match: match[0])
        return self.success([record for _, record in matches])

    def get_previous_year_data(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Value recorded one year before targetDate, searching up to three days either side."""
        store_id = self._store_id(params)
        target = _parse_date(params.get('targetDate'), 'targetDate')
        base = target - relativedelta(years=1)

        values = {row[KEY_COL]: row[VALUE_COL] for _, row in self._data_rows(self._sheet(store_id))}
        for offset in PREVIOUS_YEAR_OFFSETS:
            key = ledger_key(store_id, base + timedelta(days=offset))
            if key in values:
                return self.success(values[key])

        return self.not_found(f"No data around {base.isoformat()}")

    def create_backup(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Copy the store's sheet to ``<storeId>_backup_<YYYYMMDD>``, replacing today's copy."""
        store_id = self._store_id(params)
        now = self.clock()
        backup_name = f"{store_id}_backup_{now.strftime('%Y%m%d')}"

        self._sheet(store_id)
        if self.workbook.get_sheet(backup_name) is not None:
            self.workbook.delete_sheet(backup_name)
        self.workbook.copy_sheet(store_id, backup_name)

        logger.info(f"Created backup sheet {backup_name}")
        return self.success({'backupSheet': backup_name, 'timestamp': _iso(now)})

    def get_sync_status(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Latest lastModified and row count of the store's sheet."""
        store_id = self._store_id(params)
        rows = [row for _, row in self._data_rows(self._sheet(store_id))]

        last_sync = None
        latest = None
        for row in rows:
            value = row[LAST_MODIFIED_COL]
            if not value:
                continue
            try:
                moment = isoparse(str(value))
            except ValueError:
                logger.warning(f"Unparseable lastModified in {store_id}: {value}")
                continue
            if moment.tzinfo is None:
                moment = moment.replace(tzinfo=timezone.utc)
            if latest is None or moment > latest:
                latest, last_sync = moment, value

        return self.success({
            'lastSync': last_sync,
            'itemCount': len(rows),
            'sheetName': store_id,
        })
