"""
Identity Reconciler — Map remote (user id, user name) pairs to local actors.

Remote accounts get renamed over time while their ids stay fixed. The
reconciler keeps the local user/actor rows following those renames
without ever letting two accounts share a name.

## Rules

- Empty name: the store's unknown actor.
- ``user_id == 0``: an IP address maps to an actor with that literal
  name. Anything that validates as a regular username gets an
  ``imported>`` prefix so it can never collide with a real account.
- ``user_id != 0`` with no local user: create one. If an unrelated local
  account already holds the name, the collision suffix is appended.
- ``user_id != 0`` whose local name differs: a migrated account keeps its
  local name. Otherwise the remote is asked for the current name once per
  run and the local user and actor rows are renamed in place.

Every outcome is cached in the ``ReconciliationContext`` for the rest of
the run, so one remote id costs at most one name lookup.

## Usage

    reconciler = IdentityReconciler(store, remote)
    actor = reconciler.resolve(rev.user_id, rev.user_name)
    print(reconciler.context.remote_lookups)
"""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from ..models.records import ActorIdentity
from ..remote.base import RemoteSource
from ..store.base import LocalStore

logger = logging.getLogger(__name__)

IMPORTED_PREFIX = "imported>"
DEFAULT_COLLISION_SUFFIX = "@imported"

# Characters a registered username may never contain
INVALID_NAME_CHARS = set("@:>=#<[]|{}/")
MAX_NAME_BYTES = 255


def is_ip(name: str) -> bool:
    """True for IPv4/IPv6 addresses and ranges."""
    try:
        ipaddress.ip_address(name)
        return True
    except ValueError:
        pass
    try:
        ipaddress.ip_network(name, strict=False)
        return "/" in name
    except ValueError:
        return False


def is_valid_username(name: str) -> bool:
    """Whether ``name`` could belong to a registered account."""
    if not name or name != name.strip():
        return False
    if is_ip(name):
        return False
    if len(name.encode("utf-8")) > MAX_NAME_BYTES:
        return False
    for char in name:
        if char in INVALID_NAME_CHARS or ord(char) < 32 or ord(char) == 127:
            return False
    return True


@dataclass
class ReconciliationContext:
    """Per-run identity cache. Create one per run, never share across runs."""

    by_user_id: Dict[int, ActorIdentity] = field(default_factory=dict)
    by_name: Dict[str, ActorIdentity] = field(default_factory=dict)
    remote_names: Dict[int, Optional[str]] = field(default_factory=dict)
    remote_lookups: int = 0
    renames: int = 0

    def invalidate(self, identity: ActorIdentity) -> None:
        """Drop every cache entry that points at ``identity``."""
        self.by_user_id.pop(identity.user_id, None)
        for name in [n for n, cached in self.by_name.items() if cached.actor_id == identity.actor_id]:
            del self.by_name[name]


class IdentityReconciler:
    """Resolve remote authors to exactly one local actor per run."""

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteSource,
        collision_suffix: str = DEFAULT_COLLISION_SUFFIX,
        context: Optional[ReconciliationContext] = None,
    ):
        self.store = store
        self.remote = remote
        self.collision_suffix = collision_suffix
        self.context = context or ReconciliationContext()

    def resolve(self, user_id: int, name: str) -> ActorIdentity:
        if not name:
            return self.store.unknown_actor()

        if not user_id:
            return self._resolve_anonymous(name)

        cached = self.context.by_user_id.get(user_id)
        if cached is not None:
            return cached

        identity = self._resolve_registered(user_id, name)
        self.context.by_user_id[user_id] = identity
        return identity

    # ─── Anonymous / imported authors ───────────────────────

    def _resolve_anonymous(self, name: str) -> ActorIdentity:
        cached = self.context.by_name.get(name)
        if cached is not None:
            return cached

        local_name = name
        if is_valid_username(name):
            local_name = IMPORTED_PREFIX + name
        identity = self.store.acquire_actor(0, local_name)
        self.context.by_name[name] = identity
        return identity

    # ─── Registered authors ─────────────────────────────────

    def _resolve_registered(self, user_id: int, name: str) -> ActorIdentity:
        local = self.store.get_actor_by_user_id(user_id)

        if local is None:
            target = self._free_name(name, user_id)
            if target != name:
                logger.info(
                    f"User name {name} is already in use, using {target} for ID {user_id} instead",
                    extra={"user_id": user_id},
                )
            return self.store.acquire_actor(user_id, target)

        if self._same_account_name(local.name, name):
            return self._with_actor(local)

        if local.migrated:
            logger.info(
                f"User ID {user_id} already migrated, keeping user name as {local.name}",
                extra={"user_id": user_id},
            )
            return self._with_actor(local)

        current = self._authoritative_name(user_id)
        if current is None:
            logger.warning(
                f"User ID {user_id} not found remotely (suppressed?), keeping user name {local.name}",
                extra={"user_id": user_id},
            )
            return self._with_actor(local)

        target = self._free_name(current, user_id)
        if target == local.name:
            return self._with_actor(local)

        self.context.invalidate(local)
        self.store.rename_user(user_id, target)
        self.context.renames += 1
        logger.info(
            f"User rename on ID {user_id}: {local.name} => {target}",
            extra={"user_id": user_id},
        )
        return self.store.acquire_actor(user_id, target)

    def _authoritative_name(self, user_id: int) -> Optional[str]:
        if user_id not in self.context.remote_names:
            self.context.remote_lookups += 1
            self.context.remote_names[user_id] = self.remote.fetch_user_name(user_id)
        return self.context.remote_names[user_id]

    def _with_actor(self, identity: ActorIdentity) -> ActorIdentity:
        if identity.actor_id:
            return identity
        return self.store.acquire_actor(identity.user_id, identity.name)

    def _same_account_name(self, local_name: str, remote_name: str) -> bool:
        """A locally disambiguated name still counts as the remote one."""
        if local_name == remote_name:
            return True
        base = remote_name + self.collision_suffix
        return local_name == base or (
            local_name.startswith(base) and local_name[len(base):].isdigit()
        )

    def _free_name(self, name: str, user_id: int) -> str:
        """``name``, or the first suffixed variant no other account holds."""
        candidate = name
        attempt = 1
        while self._held_by_other(candidate, user_id):
            candidate = f"{name}{self.collision_suffix}"
            if attempt > 1:
                candidate += str(attempt)
            attempt += 1
        return candidate

    def _held_by_other(self, name: str, user_id: int) -> bool:
        holder = self.store.find_user_id_by_name(name)
        if holder is not None and holder != user_id:
            return True
        actor = self.store.get_actor_by_name(name)
        return actor is not None and actor.user_id != user_id
