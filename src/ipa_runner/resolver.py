"""Host-group resolution against the FreeIPA directory.

A host group lists its members in three attributes:

- ``memberHost``: host DNs
- ``memberHostGroup``: nested host-group DNs
- ``member``: either of the above, told apart by the shape of the DN

Nested groups are expanded breadth-first up to ``LDAP_HOST_GROUP_DEPTH``
levels (one by default). Every group DN is visited at most once, so a
group that contains itself, directly or through a cycle, still resolves.
"""

import logging
from typing import Callable, Iterable

from .config import LDAPConfig
from .directory import DirectoryClient, Entry, SearchScope, equality_filter
from .dn import DistinguishedName, DNLayout
from .exceptions import ResolutionError
from .logging import get_logger, log_performance
from .types import unique_hosts

logger = get_logger(__name__)

MEMBER_ATTRS = ["memberHost", "memberHostGroup", "member"]
HOST_GROUP_FILTER = "(objectClass=ipaHostGroup)"
HOST_FILTER = "(objectClass=ipaHost)"


class GroupResolver:
    """Expands host-group names into ordered, duplicate-free FQDN lists.

    Each call opens its own directory connection, binds with the service
    account and closes the connection when done.

    Example:
        >>> resolver = GroupResolver(config.ldap)
        >>> resolver.resolve_group_hosts("desktops")
        ['a.example.com', 'b.example.com']
    """

    def __init__(
        self,
        config: LDAPConfig,
        client_factory: Callable[[], DirectoryClient] | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            config: Directory settings, including the service credentials
            client_factory: Builds an unconnected directory client
        """
        self.config = config
        self.layout = DNLayout.from_config(config)
        self._client_factory = client_factory or (lambda: DirectoryClient(config))

    def resolve_group_hosts(self, group_name: str) -> list[str]:
        """Resolve a host group to its member FQDNs.

        Raises:
            AuthError: If the service account cannot bind
            DirectoryError: If any search fails
            ResolutionError: If the group does not exist
        """
        client = self._client_factory()
        with log_performance(logger.logger, "Host group resolution", level=logging.DEBUG,
                             group=group_name):
            try:
                client.connect(self.config.bind_username, self.config.bind_password)
                fqdns = self._resolve(client, group_name)
            finally:
                client.close()

        logger.info(f"Resolved host group to {len(fqdns)} host(s)", group=group_name)
        return fqdns

    def _resolve(self, client: DirectoryClient, group_name: str) -> list[str]:
        entries = client.search(
            self.layout.host_groups_base,
            SearchScope.SUBTREE,
            equality_filter("cn", group_name),
            MEMBER_ATTRS,
        )
        if not entries:
            raise ResolutionError.not_found(group_name)

        root = entries[0]
        host_refs, nested_refs = self._classify(root)
        host_refs.extend(self._expand_nested(client, root, nested_refs))

        fqdns = []
        for ref in host_refs:
            fqdn = self._host_fqdn(client, ref)
            if fqdn:
                fqdns.append(fqdn)
        return unique_hosts(fqdns)

    def _classify(self, entry: Entry) -> tuple[list[str], list[str]]:
        """Split an entry's members into host DNs and nested-group DNs."""
        hosts = list(entry.values("memberHost"))
        groups = list(entry.values("memberHostGroup"))
        for ref in entry.values("member"):
            if self._is_host_ref(ref):
                hosts.append(ref)
            elif self._is_host_group_ref(ref):
                groups.append(ref)
        return hosts, groups

    def _expand_nested(
        self,
        client: DirectoryClient,
        root: Entry,
        nested_refs: Iterable[str],
    ) -> list[str]:
        """Collect host DNs from nested groups, level by level."""
        visited = {_group_key(root.dn)}
        hosts: list[str] = []
        frontier = list(nested_refs)
        level = 1

        while frontier and level <= self.config.host_group_depth:
            next_frontier: list[str] = []
            for ref in frontier:
                key = _group_key(ref)
                if key in visited:
                    logger.debug("Skipping already visited host group", dn=ref)
                    continue
                visited.add(key)

                found = client.search(ref, SearchScope.BASE, HOST_GROUP_FILTER, MEMBER_ATTRS)
                if len(found) != 1:
                    logger.debug("Nested host group not found", dn=ref)
                    continue
                group_hosts, group_groups = self._classify(found[0])
                hosts.extend(group_hosts)
                next_frontier.extend(group_groups)
            frontier = next_frontier
            level += 1

        if frontier:
            logger.debug(
                "Nested host groups beyond depth limit were not expanded",
                depth=self.config.host_group_depth,
                skipped=len(frontier),
            )
        return hosts

    def _host_fqdn(self, client: DirectoryClient, ref: str) -> str | None:
        """FQDN of a host DN, looked up when the DN does not carry it."""
        dn = DistinguishedName.try_parse(ref)
        if dn is not None:
            fqdn = dn.leading("fqdn")
            if fqdn:
                return fqdn

        found = client.search(ref, SearchScope.BASE, HOST_FILTER, ["fqdn"])
        if len(found) == 1:
            return found[0].value("fqdn")
        logger.debug("Host entry not found", dn=ref)
        return None

    @staticmethod
    def _is_host_ref(ref: str) -> bool:
        return ref.strip().lower().startswith("fqdn=")

    def _is_host_group_ref(self, ref: str) -> bool:
        return f"cn={self.config.host_groups_cn.lower()}," in ref.lower()


def resolve_targets(
    resolver: GroupResolver | None,
    groups: Iterable[str],
    hostnames: Iterable[str],
) -> list[str]:
    """Build the target list for a task.

    Resolves every group in order, then appends the explicit hostnames.
    The first group that fails to resolve aborts the whole call.

    Raises:
        ResolutionError: If groups are given but no resolver is available,
            or a group does not exist
    """
    groups = [g for g in groups if g.strip()]
    resolved: list[list[str]] = []
    for group in groups:
        if resolver is None:
            raise ResolutionError(
                f"cannot resolve host group {group}: no directory configured",
                reason="no_directory",
                group=group,
            )
        resolved.append(resolver.resolve_group_hosts(group))
    return unique_hosts(*resolved, list(hostnames))


def _group_key(ref: str) -> object:
    """Identity of a group DN, insensitive to case and RDN spacing."""
    dn = DistinguishedName.try_parse(ref)
    if dn is None:
        return ref.strip().lower()
    return dn.key()
