"""SQLAlchemy session hooks that feed ORM ledger writes into the updater.

``install_cube_hooks(target)`` registers two listeners on a ``Session``,
``sessionmaker`` or session class:

- ``before_flush`` turns pending inserts, updates and deletes of
  ``FtTransaction`` into ``LedgerMutation`` values, reading old values from
  the attribute history (cube-relevant columns are ``active_history``);
- ``after_flush_postexec`` applies them once the ledger rows are written, in
  the same transaction.

Deleting an ``FtCategory`` or ``FtAccount`` changes ledger rows inside the
database (``ON DELETE SET NULL`` and ``ON DELETE CASCADE``). ``before_flush``
reads the affected transactions first and turns them into mutations too.

Core bulk statements bypass the ORM and therefore these hooks; wrap them in
``updater.track_bulk_change`` instead.
"""

from __future__ import annotations

import dataclasses
from collections import defaultdict
from typing import Any

from db.models.finance import FtAccount, FtCategory, FtTransaction
from sqlalchemy import event, inspect, select
from sqlalchemy.orm import Session

from .ledger import Ledger, SqlLedger, cube_fields_of
from .logging_setup import get_logger
from .models import CubeFields, LedgerMutation, TransactionType, quantize_amount
from .updater import apply_mutations

logger = get_logger("trends_cube.hooks")

_PENDING_KEY = "trends_cube.pending_mutations"
_INSTALLED: dict[Any, tuple[Any, Any]] = {}
_TRACKED = ("tenant_id", "date", "amount", "type", "category_id", "account_id", "is_recurring")


def _previous(state, key: str) -> Any:
    hist = state.attrs[key].load_history()
    if hist.deleted:
        return hist.deleted[0]
    if hist.unchanged:
        return hist.unchanged[0]
    if hist.added:
        # Value set on an attribute that was previously NULL.
        return None
    return getattr(state.obj(), key)


def _old_side(tx: FtTransaction) -> tuple[str, CubeFields]:
    state = inspect(tx)
    values = {key: _previous(state, key) for key in _TRACKED}
    return values["tenant_id"], CubeFields(
        date=values["date"],
        amount=quantize_amount(values["amount"]),
        transaction_type=TransactionType(values["type"]),
        category_id=values["category_id"],
        account_id=values["account_id"],
        is_recurring=bool(values["is_recurring"]),
    )


def _referential_mutations(
    session: Session, ledger: Ledger
) -> list[tuple[str, LedgerMutation]]:
    out: list[tuple[str, LedgerMutation]] = []
    for obj in session.deleted:
        if isinstance(obj, FtCategory):
            column = FtTransaction.category_id
        elif isinstance(obj, FtAccount):
            column = FtTransaction.account_id
        else:
            continue
        with session.no_autoflush:
            ids = session.scalars(
                select(FtTransaction.id).where(
                    FtTransaction.tenant_id == obj.tenant_id, column == obj.id
                )
            ).all()
            affected = ledger.cube_fields(session, obj.tenant_id, ids)
        for old in affected.values():
            if isinstance(obj, FtCategory):
                m = LedgerMutation.updated(old, dataclasses.replace(old, category_id=None))
            else:
                m = LedgerMutation.deleted(old)
            out.append((obj.tenant_id, m))
    return out


def collect_mutations(
    session: Session, *, ledger: Ledger | None = None
) -> list[tuple[str, LedgerMutation]]:
    """Return ``(tenant_id, mutation)`` pairs for the session's pending ledger writes.

    Includes the ledger rows a pending category or account delete will
    rewrite or remove through its foreign key.
    """

    out: list[tuple[str, LedgerMutation]] = []
    for obj in session.new:
        if isinstance(obj, FtTransaction):
            out.append((obj.tenant_id, LedgerMutation.created(cube_fields_of(obj))))
    for obj in session.dirty:
        if not isinstance(obj, FtTransaction) or obj in session.deleted:
            continue
        if not session.is_modified(obj, include_collections=False):
            continue
        old_tenant, old = _old_side(obj)
        new = cube_fields_of(obj)
        if old_tenant != obj.tenant_id:
            out.append((old_tenant, LedgerMutation.deleted(old)))
            out.append((obj.tenant_id, LedgerMutation.created(new)))
            continue
        m = LedgerMutation.updated(old, new)
        if not m.is_noop:
            out.append((obj.tenant_id, m))
    for obj in session.deleted:
        if isinstance(obj, FtTransaction):
            tenant, old = _old_side(obj)
            out.append((tenant, LedgerMutation.deleted(old)))
    out.extend(_referential_mutations(session, ledger or SqlLedger()))
    return out


def _make_listeners(ledger: Ledger | None):
    def before_flush(session: Session, flush_context, instances) -> None:
        session.info[_PENDING_KEY] = collect_mutations(session, ledger=ledger)

    def after_flush_postexec(session: Session, flush_context) -> None:
        pending = session.info.pop(_PENDING_KEY, None)
        if not pending:
            return
        by_tenant: dict[str, list[LedgerMutation]] = defaultdict(list)
        for tenant, mutation in pending:
            by_tenant[tenant].append(mutation)
        for tenant in sorted(by_tenant):
            apply_mutations(session, tenant, by_tenant[tenant], ledger=ledger)

    return before_flush, after_flush_postexec


def install_cube_hooks(target: Any, *, ledger: Ledger | None = None) -> None:
    """Keep the cube current for ORM writes made through ``target``.

    Installing twice on the same target is a no-op.
    """

    if target in _INSTALLED:
        return
    before, after = _make_listeners(ledger)
    event.listen(target, "before_flush", before)
    event.listen(target, "after_flush_postexec", after)
    _INSTALLED[target] = (before, after)
    logger.debug("cube hooks installed on %r", target)


def remove_cube_hooks(target: Any) -> None:
    listeners = _INSTALLED.pop(target, None)
    if listeners is None:
        return
    before, after = listeners
    event.remove(target, "before_flush", before)
    event.remove(target, "after_flush_postexec", after)
    logger.debug("cube hooks removed from %r", target)


__all__ = ["collect_mutations", "install_cube_hooks", "remove_cube_hooks"]
