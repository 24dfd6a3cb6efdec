"""Distinguished names for FreeIPA directory entries.

FreeIPA lays entries out under fixed containers, so the DN of a user,
group, host, host group or service can be built from its name alone and
parsed back the same way.

Example:
    >>> layout = DNLayout.from_config(config.ldap)
    >>> dn = layout.host("a.example.com")
    >>> str(dn)
    'fqdn=a.example.com,cn=hosts,cn=accounts,dc=example,dc=com'
    >>> layout.identify(dn)
    (<EntityKind.HOST: 'host'>, 'a.example.com')
"""

import re
from dataclasses import dataclass
from enum import Enum

from ldap3.core.exceptions import LDAPInvalidDnError
from ldap3.utils.dn import escape_rdn, parse_dn

from .config import LDAPConfig

_HEX_ESCAPE = re.compile(r"\\([0-9a-fA-F]{2})|\\(.)")


def _unescape(value: str) -> str:
    """Undo RFC 4514 escaping of an attribute value."""
    return _HEX_ESCAPE.sub(
        lambda m: chr(int(m.group(1), 16)) if m.group(1) else m.group(2),
        value,
    )


@dataclass(frozen=True)
class DistinguishedName:
    """An immutable DN as an ordered sequence of (attribute, value) RDNs.

    The first RDN names the entry itself; the rest name its parents.
    Attribute comparison is case-insensitive, values are kept unescaped.
    """

    rdns: tuple[tuple[str, str], ...]

    @classmethod
    def parse(cls, text: str) -> "DistinguishedName":
        """Parse a DN string.

        Raises:
            ValueError: If the text is not a valid DN
        """
        try:
            parts = parse_dn(text.strip(), strip=True)
        except LDAPInvalidDnError as e:
            raise ValueError(f"invalid DN {text!r}: {e}") from e
        if not parts:
            raise ValueError(f"invalid DN {text!r}: empty")
        return cls(tuple((attr, _unescape(value)) for attr, value, _ in parts))

    @classmethod
    def try_parse(cls, text: str) -> "DistinguishedName | None":
        """Parse a DN string, returning None instead of raising."""
        try:
            return cls.parse(text)
        except ValueError:
            return None

    def __str__(self) -> str:
        return ",".join(f"{attr}={escape_rdn(value)}" for attr, value in self.rdns)

    @property
    def rdn_attr(self) -> str:
        """Attribute of the leading RDN, lower-cased."""
        return self.rdns[0][0].lower()

    @property
    def rdn_value(self) -> str:
        """Value of the leading RDN."""
        return self.rdns[0][1]

    @property
    def parent(self) -> "DistinguishedName":
        return DistinguishedName(self.rdns[1:])

    def leading(self, attr: str) -> str | None:
        """Value of the leading RDN if its attribute is ``attr``."""
        if self.rdn_attr == attr.lower():
            return self.rdn_value
        return None

    def child(self, attr: str, value: str) -> "DistinguishedName":
        return DistinguishedName(((attr, value),) + self.rdns)

    def key(self) -> tuple[tuple[str, str], ...]:
        """Hashable form equal for DNs the directory treats as the same entry."""
        return _normalise(self)

    def matches(self, other: "DistinguishedName") -> bool:
        """Case-insensitive equality, the way the directory compares DNs."""
        return self.key() == other.key()


def _normalise(dn: DistinguishedName) -> tuple[tuple[str, str], ...]:
    return tuple((attr.lower(), value.lower()) for attr, value in dn.rdns)


class EntityKind(str, Enum):
    """Kinds of entries with a fixed naming template."""

    USER = "user"
    GROUP = "group"
    HOST = "host"
    HOSTGROUP = "hostgroup"
    SERVICE = "service"


# Naming attribute of each kind
NAMING_ATTRS: dict[EntityKind, str] = {
    EntityKind.USER: "uid",
    EntityKind.GROUP: "cn",
    EntityKind.HOST: "fqdn",
    EntityKind.HOSTGROUP: "cn",
    EntityKind.SERVICE: "krbprincipalname",
}


@dataclass(frozen=True)
class DNLayout:
    """Directory tree layout: domain components and container names."""

    domain_sld: str
    domain_tld: str
    accounts_cn: str = "accounts"
    users_cn: str = "users"
    groups_cn: str = "groups"
    hosts_cn: str = "hosts"
    host_groups_cn: str = "hostgroups"
    services_cn: str = "services"

    @classmethod
    def from_config(cls, config: LDAPConfig) -> "DNLayout":
        return cls(
            domain_sld=config.domain_sld,
            domain_tld=config.domain_tld,
            accounts_cn=config.accounts_cn,
            users_cn=config.users_cn,
            groups_cn=config.groups_cn,
            hosts_cn=config.hosts_cn,
            host_groups_cn=config.host_groups_cn,
            services_cn=config.services_cn,
        )

    @property
    def accounts(self) -> DistinguishedName:
        """``cn=<accounts>,dc=<sld>,dc=<tld>``"""
        return DistinguishedName((
            ("cn", self.accounts_cn),
            ("dc", self.domain_sld),
            ("dc", self.domain_tld),
        ))

    def container(self, kind: EntityKind) -> DistinguishedName:
        """Container DN holding every entry of ``kind``."""
        names = {
            EntityKind.USER: self.users_cn,
            EntityKind.GROUP: self.groups_cn,
            EntityKind.HOST: self.hosts_cn,
            EntityKind.HOSTGROUP: self.host_groups_cn,
            EntityKind.SERVICE: self.services_cn,
        }
        return self.accounts.child("cn", names[kind])

    def entity(self, kind: EntityKind, name: str) -> DistinguishedName:
        return self.container(kind).child(NAMING_ATTRS[kind], name)

    def user(self, username: str) -> DistinguishedName:
        return self.entity(EntityKind.USER, username)

    def group(self, name: str) -> DistinguishedName:
        return self.entity(EntityKind.GROUP, name)

    def host(self, fqdn: str) -> DistinguishedName:
        return self.entity(EntityKind.HOST, fqdn)

    def host_group(self, name: str) -> DistinguishedName:
        return self.entity(EntityKind.HOSTGROUP, name)

    def service(self, principal: str) -> DistinguishedName:
        return self.entity(EntityKind.SERVICE, principal)

    @property
    def host_groups_base(self) -> DistinguishedName:
        """Search base for host groups."""
        return self.container(EntityKind.HOSTGROUP)

    def identify(self, dn: "DistinguishedName | str") -> tuple[EntityKind, str] | None:
        """Recover the kind and name of an entry DN built by this layout.

        Returns None for DNs outside the known containers.
        """
        if isinstance(dn, str):
            parsed = DistinguishedName.try_parse(dn)
            if parsed is None:
                return None
            dn = parsed
        if len(dn.rdns) < 2:
            return None
        for kind, attr in NAMING_ATTRS.items():
            if dn.rdn_attr == attr and dn.parent.matches(self.container(kind)):
                return kind, dn.rdn_value
        return None
