"""Find running processes by name."""

from collections.abc import Callable, Iterable
from typing import Any

import psutil
import structlog

from wilt.errors import EnumerationError
from wilt.models import ProcessIdentity

log = structlog.get_logger()

_ATTRS = ["pid", "name", "create_time"]


class Matcher:
    """
    Match the OS process list against a name query.

    A process matches when the query is a case-sensitive substring of its
    name. Processes that vanish or deny access mid-scan are skipped; failing
    to list processes at all raises EnumerationError.
    """

    def __init__(
        self,
        query: str,
        process_iter: Callable[..., Iterable[Any]] = psutil.process_iter,
    ) -> None:
        """
        Initialize the Matcher.

        Args:
            query: Substring to look for in process names.
            process_iter: Process enumerator, psutil.process_iter by default.
        """
        if not query:
            raise ValueError("query must not be empty")
        self._query = query
        self._process_iter = process_iter

    @property
    def query(self) -> str:
        return self._query

    def matches(self, name: str) -> bool:
        """Check whether a process name matches the query."""
        return self._query in name

    def find(self) -> dict[ProcessIdentity, str]:
        """
        Scan the process list once.

        Returns:
            Mapping of identity to display name for every matching process.
        """
        found: dict[ProcessIdentity, str] = {}
        try:
            for proc in self._process_iter(attrs=_ATTRS, ad_value=None):
                info = proc.info
                name = info.get("name")
                start_time = info.get("create_time")
                if not name or start_time is None or not self.matches(name):
                    continue
                found[ProcessIdentity(pid=info["pid"], start_time=start_time)] = name
        except (OSError, psutil.Error) as exc:
            log.error("enumeration_failed", error=str(exc))
            raise EnumerationError(f"cannot list processes: {exc}") from exc
        return found
