"""Session / context state for the SCN console.

A ``SessionContext`` is the single source of truth for the current role,
vertical and date range of one interactive session.  The reduced-operations
flag is not per session: it lives on one ``OperationsState`` shared by every
context in the process.  Contexts are mutated only through their setters,
which validate against the static registries, and notify subscribers
synchronously after every accepted change.

Request handlers never read a live context directly: they take a
``SessionSnapshot`` at request start and evaluate every policy decision
against it, so a concurrent role switch cannot produce a mixed
old-role/new-vertical read.

``SessionStore`` keeps one context per session key (token subject, or the
demo ``X-Session-Id`` header) for the lifetime of the process.
"""
from __future__ import annotations

import dataclasses
import functools
import logging
from datetime import date, datetime
from typing import Any, Callable

from scn_console.rbac import ROLES, Module, Role, can_access_module, coerce_role, is_restricted_role
from scn_console.verticals import VERTICALS, Vertical, get_vertical

logger = logging.getLogger(__name__)


class InvalidSessionValue(ValueError):
    """A session setter received a value outside the enumerated set."""


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclasses.dataclass(frozen=True)
class DateRange:
    date_from: date
    date_to: date

    def __post_init__(self) -> None:
        if not isinstance(self.date_from, date) or not isinstance(self.date_to, date):
            raise InvalidSessionValue("Date range bounds must be dates")
        # datetime is a date subclass but does not compare with one.
        for name in ("date_from", "date_to"):
            value = getattr(self, name)
            if isinstance(value, datetime):
                object.__setattr__(self, name, value.date())
        if self.date_from > self.date_to:
            raise InvalidSessionValue(
                f"Date range start {self.date_from} is after end {self.date_to}"
            )

    def to_dict(self) -> dict[str, str]:
        return {"from": self.date_from.isoformat(), "to": self.date_to.isoformat()}


DEFAULT_DATE_RANGE = DateRange(date(2024, 1, 1), date(2024, 1, 16))


@dataclasses.dataclass(frozen=True)
class SessionSnapshot:
    """Immutable view of a session, captured once per request."""

    role: Role
    vertical: Vertical
    date_range: DateRange
    reduced_operations_mode: bool
    version: int = 0

    def can_access_module(self, module: Module | str) -> bool:
        return can_access_module(self.role, module)

    def is_restricted_role(self) -> bool:
        return is_restricted_role(self.role)

    @property
    def scope_key(self) -> tuple[str, str, str, str]:
        """Cache-key component: everything that changes what data is shown."""
        return (
            self.role.value,
            self.vertical.id,
            self.date_range.date_from.isoformat(),
            self.date_range.date_to.isoformat(),
        )

    def scope_params(self) -> dict[str, str]:
        """Query parameters that scope an upstream request to this session."""
        return {
            "vertical_id": self.vertical.id,
            "start_date": self.date_range.date_from.isoformat(),
            "end_date": self.date_range.date_to.isoformat(),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role.value,
            "vertical": self.vertical.id,
            "date_range": self.date_range.to_dict(),
            "reduced_operations_mode": self.reduced_operations_mode,
            "restricted": self.is_restricted_role(),
            "version": self.version,
        }


@dataclasses.dataclass(frozen=True)
class SessionChange:
    previous: SessionSnapshot
    current: SessionSnapshot
    fields: frozenset[str]

    @property
    def scope_changed(self) -> bool:
        return bool(self.fields & {"role", "vertical", "date_range"})


SessionSubscriber = Callable[[SessionChange], None]


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _validate_role(value: Any) -> Role:
    role = coerce_role(value)
    if role is None:
        raise InvalidSessionValue(f"Unknown role: {value!r}")
    return role


def _validate_vertical(value: Any) -> Vertical:
    vertical_id = value.id if isinstance(value, Vertical) else value
    vertical = get_vertical(vertical_id)
    if vertical is None or (isinstance(value, Vertical) and value != vertical):
        raise InvalidSessionValue(f"Unknown vertical: {value!r}")
    return vertical


def _validate_date_range(value: Any) -> DateRange:
    if isinstance(value, DateRange):
        return value
    if isinstance(value, (tuple, list)) and len(value) == 2:
        return DateRange(value[0], value[1])
    raise InvalidSessionValue(f"Invalid date range: {value!r}")


def _validate_flag(value: Any) -> bool:
    if not isinstance(value, bool):
        raise InvalidSessionValue(f"Reduced operations mode must be a boolean, got {value!r}")
    return value


_VALIDATORS: dict[str, Callable[[Any], Any]] = {
    "role": _validate_role,
    "vertical": _validate_vertical,
    "date_range": _validate_date_range,
    "reduced_operations_mode": _validate_flag,
}


# ---------------------------------------------------------------------------
# Operations state (process-wide)
# ---------------------------------------------------------------------------


class OperationsState:
    """Operating flags shared by every session in the process.

    Reduced-operations mode is one system-wide switch: turning it on in any
    session freezes payments and forces portal-only delivery for all of them.
    Attached contexts are told about every change so their subscribers see
    it like any other session change.
    """

    def __init__(self, reduced_operations_mode: bool = False) -> None:
        self._reduced_operations_mode = _validate_flag(reduced_operations_mode)
        self._contexts: list[SessionContext] = []

    @property
    def reduced_operations_mode(self) -> bool:
        return self._reduced_operations_mode

    def attach(self, context: SessionContext) -> None:
        if context not in self._contexts:
            self._contexts.append(context)

    def detach(self, context: SessionContext) -> None:
        if context in self._contexts:
            self._contexts.remove(context)

    def set_reduced_operations_mode(self, enabled: bool, origin: SessionContext | None = None) -> bool:
        """Flip the flag; returns ``True`` when the value actually changed.

        *origin* is the context that requested the change.  It reports the
        change itself, together with any fields it updated alongside.
        """
        enabled = _validate_flag(enabled)
        if enabled == self._reduced_operations_mode:
            return False
        previous = self._reduced_operations_mode
        self._reduced_operations_mode = enabled
        logger.warning("Reduced operations mode %s", "enabled" if enabled else "disabled")
        for context in list(self._contexts):
            if context is not origin:
                context._operations_changed(previous)
        return True


# ---------------------------------------------------------------------------
# Session context
# ---------------------------------------------------------------------------


class SessionContext:
    """Mutable session state with synchronous change notification.

    Role, vertical and date range belong to the session.  The
    reduced-operations flag lives on the shared ``OperationsState``; a
    context built without one gets a private state of its own.
    """

    def __init__(
        self,
        role: Role | str | None = None,
        vertical: Vertical | str | None = None,
        date_range: DateRange | None = None,
        reduced_operations_mode: bool = False,
        operations: OperationsState | None = None,
    ) -> None:
        self._role = _validate_role(role if role is not None else ROLES[0].id)
        self._vertical = _validate_vertical(vertical if vertical is not None else VERTICALS[0])
        self._date_range = _validate_date_range(date_range or DEFAULT_DATE_RANGE)
        self._operations = operations or OperationsState(reduced_operations_mode)
        self._operations.attach(self)
        self._version = 0
        self._subscribers: list[SessionSubscriber] = []

    # ---- getters ----

    def get_current_role(self) -> Role:
        return self._role

    def get_current_vertical(self) -> Vertical:
        return self._vertical

    def get_date_range(self) -> DateRange:
        return self._date_range

    def get_reduced_operations_mode(self) -> bool:
        return self._operations.reduced_operations_mode

    @property
    def operations(self) -> OperationsState:
        return self._operations

    @property
    def version(self) -> int:
        return self._version

    # ---- setters ----

    def set_current_role(self, role: Role | str) -> SessionSnapshot:
        return self.update(role=role)

    def set_current_vertical(self, vertical: Vertical | str) -> SessionSnapshot:
        return self.update(vertical=vertical)

    def set_date_range(self, date_range: DateRange | tuple[date, date]) -> SessionSnapshot:
        return self.update(date_range=date_range)

    def set_reduced_operations_mode(self, enabled: bool) -> SessionSnapshot:
        return self.update(reduced_operations_mode=enabled)

    def update(self, **changes: Any) -> SessionSnapshot:
        """Replace one or more fields atomically and notify subscribers once.

        Every value is validated before anything is written; a single invalid
        value rejects the whole update.  A change to the reduced-operations
        flag is written to the shared state and reaches every other session.
        """
        unknown = set(changes) - set(_VALIDATORS)
        if unknown:
            raise InvalidSessionValue(f"Unknown session field(s): {', '.join(sorted(unknown))}")

        validated = {name: _VALIDATORS[name](value) for name, value in changes.items()}

        previous = self.snapshot()
        changed = frozenset(
            name for name, value in validated.items() if getattr(previous, name) != value
        )
        if not changed:
            return previous

        for name in changed - {"reduced_operations_mode"}:
            setattr(self, f"_{name}", validated[name])
        if "reduced_operations_mode" in changed:
            self._operations.set_reduced_operations_mode(
                validated["reduced_operations_mode"], origin=self,
            )
        self._version += 1

        current = self.snapshot()
        logger.debug("Session updated (v%d): %s", self._version, ", ".join(sorted(changed)))
        self._notify(SessionChange(previous=previous, current=current, fields=changed))
        return current

    def _operations_changed(self, previous_flag: bool) -> None:
        """The shared flag was flipped by another session."""
        previous = dataclasses.replace(self.snapshot(), reduced_operations_mode=previous_flag)
        self._version += 1
        self._notify(SessionChange(
            previous=previous,
            current=self.snapshot(),
            fields=frozenset({"reduced_operations_mode"}),
        ))

    # ---- observers ----

    def subscribe(self, callback: SessionSubscriber) -> Callable[[], None]:
        """Register *callback* for change notifications; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def _notify(self, change: SessionChange) -> None:
        for callback in list(self._subscribers):
            try:
                callback(change)
            except Exception:
                logger.exception("Session subscriber %r failed", callback)

    # ---- snapshots ----

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            role=self._role,
            vertical=self._vertical,
            date_range=self._date_range,
            reduced_operations_mode=self._operations.reduced_operations_mode,
            version=self._version,
        )

    def close(self) -> None:
        """Stop receiving shared-state changes."""
        self._operations.detach(self)

    def __repr__(self) -> str:
        return (
            f"<SessionContext role={self._role.value!r} vertical={self._vertical.id!r} "
            f"reduced_ops={self.get_reduced_operations_mode()}>"
        )


# ---------------------------------------------------------------------------
# Session store
# ---------------------------------------------------------------------------


StoreListener = Callable[[str, SessionChange], None]


class SessionStore:
    """Process-lifetime registry of session contexts keyed by session key.

    Every context the store creates shares the store's ``OperationsState``.
    """

    def __init__(
        self,
        default_date_range: DateRange | None = None,
        operations: OperationsState | None = None,
    ) -> None:
        self._default_date_range = default_date_range or DEFAULT_DATE_RANGE
        self.operations = operations or OperationsState()
        self._contexts: dict[str, SessionContext] = {}
        self._bound_roles: dict[str, Role] = {}
        self._listeners: list[StoreListener] = []

    def add_listener(self, listener: StoreListener) -> None:
        """Subscribe *listener* to every current and future context."""
        self._listeners.append(listener)
        for key, context in self._contexts.items():
            context.subscribe(functools.partial(listener, key))

    def get(self, key: str) -> SessionContext | None:
        return self._contexts.get(key)

    def get_or_create(self, key: str, identity_role: Role | None = None) -> SessionContext:
        """Return the context for *key*, creating it with defaults on first use.

        When the caller is authenticated, *identity_role* seeds the session
        role and re-binds it whenever the identity's role changes.
        """
        context = self._contexts.get(key)
        if context is None:
            context = SessionContext(
                role=identity_role,
                date_range=self._default_date_range,
                operations=self.operations,
            )
            for listener in self._listeners:
                context.subscribe(functools.partial(listener, key))
            self._contexts[key] = context
            logger.info("Session %s created (role=%s)", key, context.get_current_role().value)

        if identity_role is not None and self._bound_roles.get(key) != identity_role:
            self._bound_roles[key] = identity_role
            context.set_current_role(identity_role)
        return context

    def is_identity_bound(self, key: str) -> bool:
        return key in self._bound_roles

    def bound_role(self, key: str) -> Role | None:
        """Role the authenticated identity behind *key* holds, if any."""
        return self._bound_roles.get(key)

    def discard(self, key: str) -> None:
        context = self._contexts.pop(key, None)
        if context is not None:
            context.close()
        self._bound_roles.pop(key, None)

    def clear(self) -> None:
        for context in self._contexts.values():
            context.close()
        self._contexts.clear()
        self._bound_roles.clear()

    def __len__(self) -> int:
        return len(self._contexts)
