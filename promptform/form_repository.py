import copy
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from google.api_core import exceptions as google_exceptions
from google.cloud import firestore
from sqlalchemy import func

from promptform.entities import Base, FormRecord, ResponseRecord, utcnow
from promptform.errors import NotFound, PromptFormError, RepositoryError
from promptform.google_helpers import STORE_BACKEND, build_firestore_client, create_session_factory, logger
from promptform.grid_payload import normalize_grid_payload

FORMS_COLLECTION = "forms"
RESPONSES_COLLECTION = "responses"


def _theme_columns(form: Dict[str, Any]) -> Dict[str, Optional[str]]:
    theme = form.get("theme") or {}
    return {
        "theme_name": theme.get("name"),
        "theme_primary_color": theme.get("primaryColor"),
        "theme_background_color": theme.get("backgroundColor"),
    }


def _sort_millis(value: Any) -> float:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp() * 1000
    return 0


def recency_key(view: Dict[str, Any]) -> float:
    """Most recent of lastOpenedAt, then updatedAt, then createdAt."""
    for key in ("lastOpenedAt", "updatedAt", "createdAt"):
        if view.get(key) is not None:
            return _sort_millis(view[key])
    return 0


class FormRepository(ABC):
    """
    Forms are owned by a user; responses are append-only children of a form.
    Every write is a single document/row operation; nothing cascades.

    Both backends return the same shapes:
        form view  -> the stored form JSON plus id, ownerId, theme, aiSummary, timestamps, responseCount
        response   -> {id, formId, payload, score, maxScore, createdAt, userAgent, ip}
    """

    @contextmanager
    def _guard(self, op: str):
        try:
            yield
        except PromptFormError:
            raise
        except Exception as e:
            logger.exception(f"[STORE] {op} failed")
            raise RepositoryError(f"Store operation '{op}' failed: {e}") from e

    def _view(self, form_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        form = copy.deepcopy(data.get("form") or {})
        if data.get("theme_name"):
            theme = {
                "name": data.get("theme_name"),
                "primaryColor": data.get("theme_primary_color"),
                "backgroundColor": data.get("theme_background_color"),
            }
        else:
            theme = form.get("theme")

        view = dict(form)
        view.update({
            "id": form_id,
            "ownerId": data.get("userId"),
            "title": data.get("title") or form.get("title") or "Untitled form",
            "description": data.get("description") if data.get("description") is not None else form.get("description"),
            "theme": theme,
            "aiSummary": data.get("aiSummary"),
            "aiSummaryUpdatedAt": data.get("aiSummaryUpdatedAt"),
            "createdAt": data.get("createdAt"),
            "updatedAt": data.get("updatedAt"),
            "lastOpenedAt": data.get("lastOpenedAt"),
        })
        if data.get("responseCount") is not None:
            view["responseCount"] = data["responseCount"]
        return view

    def _copy_title(self, source: Dict[str, Any]) -> str:
        return f"{source.get('title') or 'Untitled form'} (Copy)"

    def list_responses(self, form_id: str) -> List[Dict[str, Any]]:
        """Newest first. radioGrid answers come back in the nested encoding whatever way they were stored."""
        responses = self._fetch_responses(form_id)
        try:
            form = self.get(form_id)
        except NotFound:
            # orphaned responses are returned as stored
            return responses
        for r in responses:
            r["payload"] = normalize_grid_payload(form, r.get("payload") or {})
        return responses

    # --- backend specific ---

    @abstractmethod
    def create(self, owner_id: str, form: Dict[str, Any]) -> str:
        raise NotImplementedError

    @abstractmethod
    def update(self, form_id: str, form: Dict[str, Any], owner_id: str | None = None) -> None:
        raise NotImplementedError

    @abstractmethod
    def get(self, form_id: str) -> Dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def list_by_owner(self, owner_id: str) -> List[Dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def delete(self, form_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def add_response(
        self,
        form_id: str,
        payload: Dict[str, Any],
        score: float | None = None,
        max_score: float | None = None,
        metadata: Dict[str, Any] | None = None,
    ) -> str:
        raise NotImplementedError

    @abstractmethod
    def _fetch_responses(self, form_id: str) -> List[Dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def count_responses(self, form_id: str) -> int:
        raise NotImplementedError

    @abstractmethod
    def update_ai_summary(self, form_id: str, text: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def duplicate(self, owner_id: str, source_id: str) -> Dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def rename(self, form_id: str, title: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def update_theme(self, form_id: str, theme: Dict[str, Any]) -> None:
        raise NotImplementedError

    @abstractmethod
    def mark_opened(self, form_id: str) -> None:
        raise NotImplementedError


class FirestoreFormRepository(FormRepository):
    """forms/{formId} documents with a forms/{formId}/responses subcollection."""

    def __init__(self, client=None):
        self.db = client or build_firestore_client()

    def _forms(self):
        return self.db.collection(FORMS_COLLECTION)

    def _update(self, form_id: str, changes: Dict[str, Any]) -> None:
        try:
            self._forms().document(form_id).update(changes)
        except google_exceptions.NotFound as e:
            raise NotFound(f"Form not found: {form_id}") from e

    def create(self, owner_id: str, form: Dict[str, Any]) -> str:
        with self._guard("create"):
            ref = self._forms().document()
            ref.set({
                "userId": owner_id,
                "title": form.get("title"),
                "description": form.get("description") or "",
                "form": form,
                **_theme_columns(form),
                "createdAt": firestore.SERVER_TIMESTAMP,
                "updatedAt": firestore.SERVER_TIMESTAMP,
            })
            return ref.id

    def update(self, form_id: str, form: Dict[str, Any], owner_id: str | None = None) -> None:
        changes = {
            "title": form.get("title"),
            "description": form.get("description") or "",
            "form": form,
            **_theme_columns(form),
            "updatedAt": firestore.SERVER_TIMESTAMP,
        }
        if owner_id:
            changes["userId"] = owner_id
        with self._guard("update"):
            self._update(form_id, changes)

    def get(self, form_id: str) -> Dict[str, Any]:
        with self._guard("get"):
            snap = self._forms().document(form_id).get()
            if not snap.exists:
                raise NotFound(f"Form not found: {form_id}")
            return self._view(snap.id, snap.to_dict() or {})

    def count_responses(self, form_id: str) -> int:
        with self._guard("count_responses"):
            result = self._forms().document(form_id).collection(RESPONSES_COLLECTION).count().get()
            return int(result[0][0].value) if result and result[0] else 0

    def list_by_owner(self, owner_id: str) -> List[Dict[str, Any]]:
        with self._guard("list_by_owner"):
            query = self._forms().where(filter=firestore.FieldFilter("userId", "==", owner_id))
            views = [self._view(snap.id, snap.to_dict() or {}) for snap in query.stream()]

        for view in views:
            try:
                view["responseCount"] = self.count_responses(view["id"])
            except RepositoryError:
                view["responseCount"] = 0
        views.sort(key=recency_key, reverse=True)
        return views

    def delete(self, form_id: str) -> None:
        with self._guard("delete"):
            self._forms().document(form_id).delete()

    def add_response(self, form_id, payload, score=None, max_score=None, metadata=None) -> str:
        metadata = metadata or {}
        doc = {
            "payload": payload,
            "createdAt": firestore.SERVER_TIMESTAMP,
            "userAgent": metadata.get("userAgent"),
            "ip": metadata.get("ip"),
        }
        if score is not None:
            doc["score"] = score
        if max_score is not None:
            doc["maxScore"] = max_score

        with self._guard("add_response"):
            _, ref = self._forms().document(form_id).collection(RESPONSES_COLLECTION).add(doc)
            return ref.id

    def _fetch_responses(self, form_id: str) -> List[Dict[str, Any]]:
        with self._guard("list_responses"):
            query = (
                self._forms().document(form_id).collection(RESPONSES_COLLECTION)
                .order_by("createdAt", direction=firestore.Query.DESCENDING)
            )
            out = []
            for snap in query.stream():
                data = snap.to_dict() or {}
                out.append({
                    "id": snap.id,
                    "formId": form_id,
                    "payload": data.get("payload") or {},
                    "score": data.get("score"),
                    "maxScore": data.get("maxScore"),
                    "createdAt": data.get("createdAt"),
                    "userAgent": data.get("userAgent"),
                    "ip": data.get("ip"),
                })
            return out

    def update_ai_summary(self, form_id: str, text: str) -> None:
        with self._guard("update_ai_summary"):
            self._update(form_id, {"aiSummary": text, "aiSummaryUpdatedAt": firestore.SERVER_TIMESTAMP})

    def duplicate(self, owner_id: str, source_id: str) -> Dict[str, Any]:
        src = self.get(source_id)
        title = self._copy_title(src)
        with self._guard("duplicate"):
            src_doc = self._forms().document(source_id).get().to_dict() or {}
            form = dict(src_doc.get("form") or {})
            form["title"] = title
            form["description"] = form.get("description") or src.get("description") or ""

            ref = self._forms().document()
            ref.set({
                "userId": owner_id,
                "title": title,
                "description": src_doc.get("description") or "",
                "form": form,
                "theme_name": src_doc.get("theme_name"),
                "theme_primary_color": src_doc.get("theme_primary_color"),
                "theme_background_color": src_doc.get("theme_background_color"),
                "createdAt": firestore.SERVER_TIMESTAMP,
                "updatedAt": firestore.SERVER_TIMESTAMP,
            })
            snap = ref.get()
            view = self._view(snap.id, snap.to_dict() or {})
        view["responseCount"] = 0
        return view

    def rename(self, form_id: str, title: str) -> None:
        with self._guard("rename"):
            self._update(form_id, {"title": title, "updatedAt": firestore.SERVER_TIMESTAMP})

    def update_theme(self, form_id: str, theme: Dict[str, Any]) -> None:
        with self._guard("update_theme"):
            self._update(form_id, {**_theme_columns({"theme": theme}), "updatedAt": firestore.SERVER_TIMESTAMP})

    def mark_opened(self, form_id: str) -> None:
        with self._guard("mark_opened"):
            self._update(form_id, {"lastOpenedAt": firestore.SERVER_TIMESTAMP})


class SqlFormRepository(FormRepository):
    """Same contract over SQLAlchemy (Postgres via pg8000, or SQLite locally): forms + form_responses tables."""

    def __init__(self, session_factory=None, clock: Callable[[], datetime] | None = None):
        self.SessionFactory = session_factory or create_session_factory()
        self._clock = clock or utcnow
        Base.metadata.create_all(self.SessionFactory.kw["bind"])

    def _record_data(self, rec: FormRecord) -> Dict[str, Any]:
        return {
            "userId": rec.owner_id,
            "title": rec.title,
            "description": rec.description,
            "form": rec.form,
            "theme_name": rec.theme_name,
            "theme_primary_color": rec.theme_primary_color,
            "theme_background_color": rec.theme_background_color,
            "aiSummary": rec.ai_summary,
            "aiSummaryUpdatedAt": rec.ai_summary_updated_at,
            "createdAt": rec.created_at,
            "updatedAt": rec.updated_at,
            "lastOpenedAt": rec.last_opened_at,
        }

    def _load(self, session, form_id: str) -> FormRecord:
        rec = session.query(FormRecord).filter(FormRecord.form_id == str(form_id)).one_or_none()
        if rec is None:
            raise NotFound(f"Form not found: {form_id}")
        return rec

    def _change(self, op: str, form_id: str, **values) -> None:
        with self._guard(op):
            session = self.SessionFactory()
            try:
                rec = self._load(session, form_id)
                for key, value in values.items():
                    setattr(rec, key, value)
                session.commit()
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    def create(self, owner_id: str, form: Dict[str, Any]) -> str:
        now = self._clock()
        with self._guard("create"):
            session = self.SessionFactory()
            try:
                rec = FormRecord(
                    owner_id=owner_id,
                    title=form.get("title") or "Untitled form",
                    description=form.get("description") or "",
                    form=copy.deepcopy(form),
                    **_theme_columns(form),
                    created_at=now,
                    updated_at=now,
                )
                session.add(rec)
                session.commit()
                return str(rec.form_id)
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    def update(self, form_id: str, form: Dict[str, Any], owner_id: str | None = None) -> None:
        values = {
            "title": form.get("title") or "Untitled form",
            "description": form.get("description") or "",
            "form": copy.deepcopy(form),
            **_theme_columns(form),
            "updated_at": self._clock(),
        }
        if owner_id:
            values["owner_id"] = owner_id
        self._change("update", form_id, **values)

    def get(self, form_id: str) -> Dict[str, Any]:
        with self._guard("get"):
            session = self.SessionFactory()
            try:
                rec = self._load(session, form_id)
                return self._view(rec.form_id, self._record_data(rec))
            finally:
                session.close()

    def count_responses(self, form_id: str) -> int:
        with self._guard("count_responses"):
            session = self.SessionFactory()
            try:
                return int(
                    session.query(func.count(ResponseRecord.response_id))
                    .filter(ResponseRecord.form_id == str(form_id))
                    .scalar() or 0
                )
            finally:
                session.close()

    def list_by_owner(self, owner_id: str) -> List[Dict[str, Any]]:
        with self._guard("list_by_owner"):
            session = self.SessionFactory()
            try:
                counts = dict(
                    session.query(ResponseRecord.form_id, func.count(ResponseRecord.response_id))
                    .group_by(ResponseRecord.form_id)
                    .all()
                )
                views = []
                for rec in session.query(FormRecord).filter(FormRecord.owner_id == owner_id).all():
                    view = self._view(rec.form_id, self._record_data(rec))
                    view["responseCount"] = int(counts.get(rec.form_id, 0))
                    views.append(view)
            finally:
                session.close()
        views.sort(key=recency_key, reverse=True)
        return views

    def delete(self, form_id: str) -> None:
        with self._guard("delete"):
            session = self.SessionFactory()
            try:
                session.query(FormRecord).filter(FormRecord.form_id == str(form_id)).delete()
                session.commit()
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    def add_response(self, form_id, payload, score=None, max_score=None, metadata=None) -> str:
        metadata = metadata or {}
        with self._guard("add_response"):
            session = self.SessionFactory()
            try:
                rec = ResponseRecord(
                    form_id=str(form_id),
                    payload=payload,
                    score=score,
                    max_score=max_score,
                    user_agent=metadata.get("userAgent"),
                    ip=metadata.get("ip"),
                    created_at=self._clock(),
                )
                session.add(rec)
                session.commit()
                return str(rec.response_id)
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    def _fetch_responses(self, form_id: str) -> List[Dict[str, Any]]:
        with self._guard("list_responses"):
            session = self.SessionFactory()
            try:
                rows = (
                    session.query(ResponseRecord)
                    .filter(ResponseRecord.form_id == str(form_id))
                    .order_by(ResponseRecord.created_at.desc())
                    .all()
                )
                return [
                    {
                        "id": r.response_id,
                        "formId": r.form_id,
                        "payload": dict(r.payload or {}),
                        "score": r.score,
                        "maxScore": r.max_score,
                        "createdAt": r.created_at,
                        "userAgent": r.user_agent,
                        "ip": r.ip,
                    }
                    for r in rows
                ]
            finally:
                session.close()

    def update_ai_summary(self, form_id: str, text: str) -> None:
        self._change("update_ai_summary", form_id, ai_summary=text, ai_summary_updated_at=self._clock())

    def duplicate(self, owner_id: str, source_id: str) -> Dict[str, Any]:
        src = self.get(source_id)
        title = self._copy_title(src)
        now = self._clock()
        with self._guard("duplicate"):
            session = self.SessionFactory()
            try:
                src_rec = self._load(session, source_id)
                form = copy.deepcopy(src_rec.form or {})
                form["title"] = title
                form["description"] = form.get("description") or src_rec.description or ""
                rec = FormRecord(
                    owner_id=owner_id,
                    title=title,
                    description=src_rec.description or "",
                    form=form,
                    theme_name=src_rec.theme_name,
                    theme_primary_color=src_rec.theme_primary_color,
                    theme_background_color=src_rec.theme_background_color,
                    created_at=now,
                    updated_at=now,
                )
                session.add(rec)
                session.commit()
                view = self._view(rec.form_id, self._record_data(rec))
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()
        view["responseCount"] = 0
        return view

    def rename(self, form_id: str, title: str) -> None:
        self._change("rename", form_id, title=title, updated_at=self._clock())

    def update_theme(self, form_id: str, theme: Dict[str, Any]) -> None:
        self._change("update_theme", form_id, **_theme_columns({"theme": theme}), updated_at=self._clock())

    def mark_opened(self, form_id: str) -> None:
        self._change("mark_opened", form_id, last_opened_at=self._clock())


def build_form_repository(backend: str | None = None) -> FormRepository:
    backend = (backend or STORE_BACKEND).lower()
    if backend == "sql":
        logger.info("[STORE] Using SQL form repository")
        return SqlFormRepository()
    logger.info("[STORE] Using Firestore form repository")
    return FirestoreFormRepository()
