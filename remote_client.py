"""
=============================================================================
Remote Sheet Backend Client
=============================================================================

HTTP client for the spreadsheet web app that holds the master copy of the
screening records.

Protocol (HTTP POST, multipart form body):
- action=save,   record=<JSON>                     -> {success, error?}
- action=search, completeName, dob, school         -> {success, found, records}
- action=getAll                                    -> {success, records}

Failure mapping:
- transport error, timeout, non-2xx status  -> RemoteUnreachable
- success: false                            -> RemoteRejected
- body that is not a JSON object            -> MalformedResponse

The blocking requests call runs off the event loop; callers simply await
the action methods.

Usage:
    remote = RemoteBackend('https://script.google.com/macros/s/.../exec')
    await remote.save(record)
    rows = await remote.get_all()

Date: 2026-10-17
Version: 1.0
=============================================================================
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import requests

from errors import MalformedResponse, RemoteRejected, RemoteUnreachable
from normalize import clean_text, normalize_dob


class RemoteBackend:
    """Client for the save / search / getAll actions of the remote sheet"""

    def __init__(self, url: str, timeout: float = 30.0, session: Optional[requests.Session] = None):
        """
        Initialize client.

        Args:
            url: Web app endpoint
            timeout: Seconds before a request is abandoned
            session: Optional preconfigured requests session
        """
        self.url = url
        self.timeout = timeout
        self.logger = logging.getLogger('RemoteBackend')

        # Setup requests session with headers
        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': 'DentalFieldRecords/1.0',
            'Accept': 'application/json,text/plain;q=0.9,*/*;q=0.8',
        })

    async def save(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """
        Submit one record.

        Args:
            record: Wire record (see remote_mapping)

        Returns:
            Decoded response

        Raises:
            RemoteUnreachable, RemoteRejected, MalformedResponse
        """
        result = await self._post('save', {'record': json.dumps(record)})
        if not result.get('success'):
            raise RemoteRejected(str(result.get('error') or 'Remote save was not accepted'))
        return result

    async def search(self, name: str, dob: Any, school: str) -> List[Dict[str, Any]]:
        """
        Look up the rows of one student.

        Returns:
            Matching rows (empty if not found)
        """
        result = await self._post('search', {
            'completeName': clean_text(name),
            'dob': normalize_dob(dob),
            'school': clean_text(school),
        })
        if result.get('success') is False:
            raise RemoteRejected(str(result.get('error') or 'Remote search failed'))
        if not result.get('found'):
            return []
        return self._records(result)

    async def get_all(self) -> List[Dict[str, Any]]:
        """
        Bulk export of every remote row, keyed by column header.
        """
        result = await self._post('getAll', {})
        if result.get('success') is False:
            raise RemoteRejected(str(result.get('error') or 'Remote export failed'))
        return self._records(result)

    async def is_reachable(self) -> bool:
        """Cheap connectivity probe against the endpoint"""
        if not self.url:
            return False
        return await asyncio.to_thread(self._probe)

    def close(self) -> None:
        self.session.close()

    async def _post(self, action: str, fields: Dict[str, str]) -> Dict[str, Any]:
        return await asyncio.to_thread(self._call, action, fields)

    def _call(self, action: str, fields: Dict[str, str]) -> Dict[str, Any]:
        if not self.url:
            raise RemoteUnreachable("Remote endpoint is not configured")

        # (None, value) parts make requests send multipart/form-data without filenames
        form = {'action': (None, action)}
        for name, value in fields.items():
            form[name] = (None, value)

        try:
            response = self.session.post(self.url, files=form, timeout=self.timeout)
        except requests.RequestException as e:
            self.logger.warning(f"Remote {action} failed: {e}")
            raise RemoteUnreachable(f"Remote {action} failed: {e}") from e

        if not response.ok:
            self.logger.warning(f"Remote {action} returned HTTP {response.status_code}")
            raise RemoteUnreachable(
                f"Remote {action} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        text = response.text
        self.logger.debug(f"Remote {action} response: {text[:500]}")
        try:
            data = json.loads(text)
        except ValueError:
            raise MalformedResponse(f"Remote {action} response is not JSON", body=text)
        if not isinstance(data, dict):
            raise MalformedResponse(f"Remote {action} response is not a JSON object", body=text)
        return data

    def _records(self, result: Dict[str, Any]) -> List[Dict[str, Any]]:
        records = result.get('records') or []
        if not isinstance(records, list):
            self.logger.warning("Remote records field is not a list; ignoring it")
            return []
        rows = [r for r in records if isinstance(r, dict)]
        if len(rows) != len(records):
            self.logger.warning(f"Skipped {len(records) - len(rows)} malformed remote rows")
        return rows

    def _probe(self) -> bool:
        try:
            response = self.session.head(self.url, timeout=min(self.timeout, 5.0), allow_redirects=True)
        except requests.RequestException as e:
            self.logger.debug(f"Reachability probe failed: {e}")
            return False
        return response.status_code < 500
