"""Directory client for FreeIPA's LDAP server.

A thin wrapper over ldap3 that binds as a user, runs subtree or base
searches and returns plain entries. Nothing is retried: every failure is
raised as AuthError or DirectoryError.

The channel is encrypted (LDAPS, or StartTLS for ldap:// URLs) but the
server certificate is not validated, so a self-signed FreeIPA CA works
without local trust setup.
"""

import logging
import ssl
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ldap3 import BASE, NONE, SUBTREE, SYNC, Connection, Server, Tls
from ldap3.core.exceptions import (
    LDAPBindError,
    LDAPException,
    LDAPInvalidCredentialsResult,
    LDAPNoSuchObjectResult,
)
from ldap3.utils.conv import escape_filter_chars

from .config import LDAPConfig
from .dn import DistinguishedName, DNLayout
from .exceptions import AuthError, DirectoryError
from .logging import TRACE

logger = logging.getLogger(__name__)


class SearchScope(str, Enum):
    """How much of the tree a search covers."""

    SUBTREE = "subtree"
    BASE = "base"


_LDAP3_SCOPES = {
    SearchScope.SUBTREE: SUBTREE,
    SearchScope.BASE: BASE,
}


def equality_filter(attr: str, value: str) -> str:
    """Build an ``(attr=value)`` filter with the value escaped."""
    return f"({attr}={escape_filter_chars(value)})"


@dataclass
class Entry:
    """A directory entry returned by a search.

    Attribute names are stored lower-cased; every value is a list of strings.
    """

    dn: str
    attributes: dict[str, list[str]] = field(default_factory=dict)

    def values(self, name: str) -> list[str]:
        """All values of an attribute (empty if absent)."""
        return self.attributes.get(name.lower(), [])

    def value(self, name: str) -> str | None:
        """First value of an attribute, or None."""
        values = self.values(name)
        return values[0] if values else None

    @classmethod
    def from_response(cls, item: dict[str, Any]) -> "Entry":
        attributes: dict[str, list[str]] = {}
        for name, raw in (item.get("attributes") or {}).items():
            if raw is None:
                continue
            items = raw if isinstance(raw, (list, tuple)) else [raw]
            attributes[name.lower()] = [_as_text(v) for v in items]
        return cls(dn=item["dn"], attributes=attributes)


def _as_text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


class DirectoryClient:
    """Authenticated connection to the directory.

    Example:
        >>> with DirectoryClient(config.ldap) as client:
        ...     client.connect("runner", "secret")
        ...     entries = client.search(base, SearchScope.SUBTREE, "(cn=desktops)", ["member"])
    """

    def __init__(
        self,
        config: LDAPConfig,
        server: Server | None = None,
        client_strategy: str = SYNC,
    ) -> None:
        """Initialize the client.

        Args:
            config: Directory settings
            server: Pre-built ldap3 Server (built from config.address if None)
            client_strategy: ldap3 client strategy
        """
        self.config = config
        self.layout = DNLayout.from_config(config)
        self._server = server
        self._client_strategy = client_strategy
        self._conn: Connection | None = None

    @property
    def connected(self) -> bool:
        return self._conn is not None and self._conn.bound

    def _build_server(self) -> Server:
        tls = Tls(validate=ssl.CERT_NONE)
        return Server(
            self.config.address,
            tls=tls,
            connect_timeout=self.config.timeout,
            get_info=NONE,
        )

    def connect(self, username: str, password: str) -> "DirectoryClient":
        """Open the connection and bind as ``username``.

        Raises:
            AuthError: If the credentials are rejected
            DirectoryError: If the server cannot be reached
        """
        user_dn = str(self.layout.user(username))
        server = self._server or self._build_server()
        logger.debug(f"Binding to {self.config.address} as {user_dn}")

        conn = None
        try:
            conn = Connection(
                server,
                user=user_dn,
                password=password,
                client_strategy=self._client_strategy,
                receive_timeout=self.config.timeout,
                raise_exceptions=True,
            )
            conn.open()
            if self.config.address.lower().startswith("ldap://"):
                conn.start_tls()
            bound = conn.bind()
        except (LDAPBindError, LDAPInvalidCredentialsResult) as e:
            _unbind(conn)
            raise AuthError(f"bind failed for {user_dn}: {e}", user=user_dn) from e
        except LDAPException as e:
            _unbind(conn)
            raise DirectoryError(
                f"cannot connect to {self.config.address}: {e}",
                address=self.config.address,
            ) from e

        if not bound:
            _unbind(conn)
            raise AuthError(f"bind failed for {user_dn}", user=user_dn)

        self._conn = conn
        logger.info(f"Bound to directory as {user_dn}")
        return self

    def search(
        self,
        base: "DistinguishedName | str",
        scope: SearchScope,
        search_filter: str,
        attributes: list[str],
    ) -> list[Entry]:
        """Search the directory.

        A base that does not exist yields no entries rather than an error.

        Raises:
            DirectoryError: If the client is not bound or the search fails
        """
        if self._conn is None:
            raise DirectoryError("search attempted before connect")

        base = str(base)
        logger.log(TRACE, f"search base={base} scope={scope.value} filter={search_filter}")
        try:
            self._conn.search(
                search_base=base,
                search_filter=search_filter,
                search_scope=_LDAP3_SCOPES[scope],
                attributes=attributes,
            )
        except LDAPNoSuchObjectResult:
            return []
        except LDAPException as e:
            raise DirectoryError(
                f"search failed under {base}: {e}",
                base=base,
                filter=search_filter,
            ) from e

        return [
            Entry.from_response(item)
            for item in (self._conn.response or [])
            if item.get("type") == "searchResEntry"
        ]

    def close(self) -> None:
        """Unbind and drop the connection."""
        if self._conn is not None:
            _unbind(self._conn)
            self._conn = None

    def __enter__(self) -> "DirectoryClient":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()


def _unbind(conn: Connection | None) -> None:
    """Release a connection, ignoring errors from an already broken one."""
    if conn is None:
        return
    try:
        conn.unbind()
    except LDAPException as e:
        logger.debug(f"Ignoring error while closing directory connection: {e}")
