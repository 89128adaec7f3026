from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any, Iterable

from sqlalchemy import func
from sqlalchemy.orm import Session

from resttester.database.models import ALL_CHANNELS, Change, DesignDoc, Document, User


class NotFoundError(LookupError):
    pass


class ConflictError(ValueError):
    pass


def make_rev(generation: int, body: dict) -> str:
    digest = hashlib.md5(json.dumps(body, sort_keys=True).encode("utf-8"), usedforsecurity=False).hexdigest()
    return f"{generation}-{digest}"


def _next_generation(rev: str | None) -> int:
    if not rev:
        return 1
    return int(rev.split("-", 1)[0]) + 1


def normalize_channels(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    raise ValueError(f"channels must be a string or a list of strings, got {type(value).__name__}")


def can_access(user_channels: Iterable[str] | None, doc_channels: Iterable[str]) -> bool:
    # None means an administrative caller
    if user_channels is None:
        return True
    user_channels = set(user_channels)
    if ALL_CHANNELS in user_channels:
        return True
    return bool(user_channels.intersection(doc_channels))


def _strip_special(body: dict) -> dict:
    return {key: value for key, value in body.items() if not key.startswith("_")}


def _record_change(
    session: Session,
    doc_id: str,
    rev: str,
    body: dict,
    channels: list[str],
    deleted: bool,
    now: float,
) -> Change:
    change = Change(
        doc_id=doc_id,
        rev=rev,
        body=body,
        channels=channels,
        deleted=deleted,
        recorded_at=now,
    )
    session.add(change)
    session.flush()
    return change


def get_document(session: Session, doc_id: str) -> Document | None:
    return session.query(Document).filter(Document.doc_id == doc_id).one_or_none()


def put_document(session: Session, doc_id: str, body: dict, now: float) -> Document:
    existing = get_document(session, doc_id)
    incoming_rev = body.get("_rev")

    if existing is not None and not existing.deleted:
        if incoming_rev != existing.rev:
            raise ConflictError(f"Document update conflict for {doc_id!r}")
    elif incoming_rev is not None and (existing is None or incoming_rev != existing.rev):
        raise ConflictError(f"Document update conflict for {doc_id!r}")

    clean = _strip_special(body)
    channels = normalize_channels(clean.get("channels"))
    rev = make_rev(_next_generation(existing.rev if existing else None), clean)
    change = _record_change(session, doc_id, rev, clean, channels, False, now)

    if existing is None:
        existing = Document(doc_id=doc_id)
        session.add(existing)
    existing.rev = rev
    existing.body = clean
    existing.channels = channels
    existing.deleted = False
    existing.seq = change.seq
    return existing


def delete_document(session: Session, doc_id: str, rev: str | None, now: float) -> Document:
    existing = get_document(session, doc_id)
    if existing is None or existing.deleted:
        raise NotFoundError(f"Document not found: {doc_id}")
    if rev != existing.rev:
        raise ConflictError(f"Document delete conflict for {doc_id!r}")

    new_rev = make_rev(_next_generation(existing.rev), {"_deleted": True})
    # Tombstones keep their channels so readers of those channels see the deletion
    change = _record_change(session, doc_id, new_rev, {}, list(existing.channels), True, now)
    existing.rev = new_rev
    existing.body = {}
    existing.deleted = True
    existing.seq = change.seq
    return existing


def document_response(document: Document) -> dict:
    return {**document.body, "_id": document.doc_id, "_rev": document.rev}


def _latest_visible_changes(session: Session, cutoff: float, since: int = 0) -> list[Change]:
    rows = (
        session.query(Change)
        .filter(Change.seq > since, Change.recorded_at <= cutoff)
        .order_by(Change.seq)
        .all()
    )
    latest: dict[str, Change] = {}
    for row in rows:
        latest[row.doc_id] = row
    return sorted(latest.values(), key=lambda row: row.seq)


def changes_since(
    session: Session,
    cutoff: float,
    user_channels: Iterable[str] | None = None,
    since: int = 0,
    limit: int | None = None,
) -> list[dict]:
    entries = []
    for row in _latest_visible_changes(session, cutoff, since):
        if not can_access(user_channels, row.channels):
            continue
        entry: dict[str, Any] = {"seq": row.seq, "id": row.doc_id, "changes": [{"rev": row.rev}]}
        if row.deleted:
            entry["deleted"] = True
        entries.append(entry)
        if limit is not None and len(entries) >= limit:
            break
    return entries


def stable_sequence(session: Session, cutoff: float) -> int:
    value = session.query(func.max(Change.seq)).filter(Change.recorded_at <= cutoff).scalar()
    return int(value or 0)


def pending_change_count(session: Session, cutoff: float) -> int:
    return int(session.query(func.count(Change.seq)).filter(Change.recorded_at > cutoff).scalar() or 0)


def hash_password(name: str, password: str) -> str:
    return hashlib.sha256(f"{name}:{password}".encode("utf-8")).hexdigest()


def check_password(user: User, password: str) -> bool:
    if user.password_hash is None:
        return False
    return hmac.compare_digest(user.password_hash, hash_password(user.name, password))


def get_user(session: Session, name: str) -> User | None:
    return session.query(User).filter(User.name == name).one_or_none()


def upsert_user(
    session: Session,
    name: str,
    password: str | None = None,
    channels: Iterable[str] | None = None,
    disabled: bool | None = None,
) -> User:
    user = get_user(session, name)
    if user is None:
        user = User(name=name, channels=[], disabled=False)
        session.add(user)
    if password is not None:
        user.password_hash = hash_password(name, password)
    if channels is not None:
        user.channels = sorted(set(channels))
    if disabled is not None:
        user.disabled = disabled
    return user


def set_user_channels(session: Session, name: str, channels: Iterable[str]) -> User:
    user = get_user(session, name)
    if user is None:
        raise NotFoundError(f"User not found: {name!r}")
    user.channels = sorted(set(channels))
    return user


def user_response(user: User) -> dict:
    return {
        "name": user.name or "GUEST",
        "admin_channels": list(user.channels),
        "disabled": bool(user.disabled),
    }


def get_design_doc(session: Session, name: str) -> DesignDoc | None:
    return session.query(DesignDoc).filter(DesignDoc.name == name).one_or_none()


def put_design_doc(session: Session, name: str, views: dict) -> DesignDoc:
    design = get_design_doc(session, name)
    if design is None:
        design = DesignDoc(name=name)
        session.add(design)
    design.rev = make_rev(_next_generation(design.rev), views)
    design.views = views
    return design


def query_view(
    session: Session,
    design_name: str,
    view_name: str,
    cutoff: float,
    limit: int | None = None,
) -> dict:
    design = get_design_doc(session, design_name)
    if design is None or view_name not in design.views:
        raise NotFoundError(f"View not found: {design_name}/{view_name}")

    definition = design.views[view_name]
    key_field = definition["key"]
    value_field = definition.get("value")

    rows = []
    for change in _latest_visible_changes(session, cutoff):
        if change.deleted or key_field not in change.body:
            continue
        rows.append(
            {
                "id": change.doc_id,
                "key": change.body[key_field],
                "value": change.body.get(value_field) if value_field else None,
            }
        )
    rows.sort(key=lambda row: (json.dumps(row["key"], sort_keys=True), row["id"]))

    total_rows = len(rows)
    if limit is not None:
        rows = rows[:limit]
    return {"total_rows": total_rows, "rows": rows}
