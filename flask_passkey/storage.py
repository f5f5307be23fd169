"""
Flask-Passkey Storage Adapters
==============================
A small document store keyed by (user_id, collection, key), plus the
user directory the passkey flows read from.

- Single-use enforcement through conditional deletes
- Atomic conditional updates for signature counters
- In-memory adapter for development, SQLAlchemy adapter for real databases
"""

import copy
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone


def _utcnow():
    return datetime.now(timezone.utc)


def _matches(doc, expect):
    if not expect:
        return True
    return all(doc.get(field) == value for field, value in expect.items())


class RecordStore(ABC):
    """Base storage adapter interface"""

    # ==================== User Directory ====================

    @abstractmethod
    def get_user_by_email(self, email):
        """Retrieve user by (lower-cased) email address"""
        pass

    @abstractmethod
    def get_user_by_id(self, user_id):
        """Retrieve user by ID"""
        pass

    @abstractmethod
    def upsert_user(self, user_id, **fields):
        """Create the user or merge fields into the existing one"""
        pass

    # ==================== Documents ====================

    @abstractmethod
    def get(self, user_id, collection, key):
        """Return a copy of the document or None"""
        pass

    @abstractmethod
    def set(self, user_id, collection, key, data):
        """Create or overwrite a document"""
        pass

    @abstractmethod
    def update(self, user_id, collection, key, fields, expect=None):
        """Merge fields into an existing document.

        When ``expect`` is given the write only happens if every expected
        field still holds the expected value. Returns True if written.
        """
        pass

    @abstractmethod
    def delete(self, user_id, collection, key, expect=None):
        """Delete a document, optionally only if ``expect`` still matches.

        Returns True if this call removed the document.
        """
        pass

    @abstractmethod
    def list(self, user_id, collection):
        """Return [(key, document)] for a user's collection"""
        pass

    def init_app(self, app):
        pass

    def close(self):
        pass


class InMemoryRecordStore(RecordStore):
    """
    In-memory storage for development only.
    DO NOT USE IN PRODUCTION - data lost on restart.
    """

    def __init__(self):
        self.users = {}
        self.records = {}
        self._lock = threading.Lock()

    def get_user_by_email(self, email):
        if not email:
            return None
        email = email.lower()
        with self._lock:
            for user in self.users.values():
                if user.get('email') == email:
                    return dict(user)
        return None

    def get_user_by_id(self, user_id):
        with self._lock:
            user = self.users.get(str(user_id))
            return dict(user) if user else None

    def upsert_user(self, user_id, **fields):
        if fields.get('email'):
            fields['email'] = fields['email'].lower()
        with self._lock:
            user = self.users.setdefault(str(user_id), {
                'id': str(user_id),
                'created_at': _utcnow().isoformat(),
            })
            user.update(fields)
            return dict(user)

    def _collection(self, user_id, collection):
        return self.records.setdefault((str(user_id), collection), {})

    def get(self, user_id, collection, key):
        with self._lock:
            doc = self._collection(user_id, collection).get(key)
            return copy.deepcopy(doc) if doc is not None else None

    def set(self, user_id, collection, key, data):
        with self._lock:
            self._collection(user_id, collection)[key] = copy.deepcopy(data)

    def update(self, user_id, collection, key, fields, expect=None):
        with self._lock:
            doc = self._collection(user_id, collection).get(key)
            if doc is None or not _matches(doc, expect):
                return False
            doc.update(copy.deepcopy(fields))
            return True

    def delete(self, user_id, collection, key, expect=None):
        with self._lock:
            docs = self._collection(user_id, collection)
            doc = docs.get(key)
            if doc is None or not _matches(doc, expect):
                return False
            del docs[key]
            return True

    def list(self, user_id, collection):
        with self._lock:
            docs = self._collection(user_id, collection)
            return [(key, copy.deepcopy(doc)) for key, doc in docs.items()]

    def close(self):
        with self._lock:
            self.records.clear()


class SQLAlchemyRecordStore(RecordStore):
    """
    SQLAlchemy-based storage.

    Users come from the host application's model; passkey documents live in
    a single ``passkey_records`` table. Every write bumps a ``version``
    column and conditional writes only succeed when the version they read
    is still current, so two requests can never both consume a challenge.
    """

    def __init__(self, user_model, session):
        self.user_model = user_model
        self.session = session

        self._ensure_records_table()

    def _ensure_records_table(self):
        """Create passkey records table"""
        from sqlalchemy import Table, Column, Integer, String, DateTime, JSON, MetaData

        metadata = MetaData()
        self.records_table = Table(
            'passkey_records',
            metadata,
            Column('user_id', String(128), primary_key=True),
            Column('collection', String(64), primary_key=True),
            Column('key', String(255), primary_key=True),
            Column('data', JSON, nullable=False),
            Column('version', Integer, nullable=False, default=1),
            Column('created_at', DateTime, nullable=False),
            Column('updated_at', DateTime, nullable=False),
            extend_existing=True
        )

        metadata.create_all(self.session.get_bind(), checkfirst=True)

    @staticmethod
    def _user_dict(user):
        if user is None:
            return None
        if hasattr(user, 'to_dict'):
            return user.to_dict()
        return {'id': user.id, 'email': getattr(user, 'email', None)}

    def get_user_by_email(self, email):
        if not email:
            return None
        user = self.session.query(self.user_model).filter_by(email=email.lower()).first()
        return self._user_dict(user)

    def get_user_by_id(self, user_id):
        user = self.session.get(self.user_model, user_id)
        return self._user_dict(user)

    def upsert_user(self, user_id, **fields):
        if fields.get('email'):
            fields['email'] = fields['email'].lower()

        user = self.session.get(self.user_model, user_id)
        if user is None:
            user = self.user_model(id=user_id)
            self.session.add(user)

        for name, value in fields.items():
            if hasattr(self.user_model, name):
                setattr(user, name, value)

        self.session.commit()
        return self._user_dict(user)

    def _where(self, user_id, collection, key):
        table = self.records_table
        return (
            table.c.user_id == str(user_id),
            table.c.collection == collection,
            table.c.key == key,
        )

    def _fetch(self, user_id, collection, key):
        return self.session.execute(
            self.records_table.select().where(*self._where(user_id, collection, key))
        ).fetchone()

    def get(self, user_id, collection, key):
        row = self._fetch(user_id, collection, key)
        return dict(row.data) if row else None

    def set(self, user_id, collection, key, data):
        from sqlalchemy.exc import IntegrityError

        now = _utcnow()
        row = self._fetch(user_id, collection, key)

        if row is None:
            try:
                self.session.execute(
                    self.records_table.insert().values(
                        user_id=str(user_id),
                        collection=collection,
                        key=key,
                        data=dict(data),
                        version=1,
                        created_at=now,
                        updated_at=now
                    )
                )
                self.session.commit()
                return
            except IntegrityError:
                # Lost an insert race; fall through to overwrite
                self.session.rollback()

        self.session.execute(
            self.records_table.update().where(
                *self._where(user_id, collection, key)
            ).values(
                data=dict(data),
                version=self.records_table.c.version + 1,
                updated_at=now
            )
        )
        self.session.commit()

    def update(self, user_id, collection, key, fields, expect=None):
        row = self._fetch(user_id, collection, key)
        if row is None:
            return False

        data = dict(row.data)
        if not _matches(data, expect):
            return False
        data.update(fields)

        conditions = list(self._where(user_id, collection, key))
        if expect:
            conditions.append(self.records_table.c.version == row.version)

        result = self.session.execute(
            self.records_table.update().where(*conditions).values(
                data=data,
                version=row.version + 1,
                updated_at=_utcnow()
            )
        )
        self.session.commit()
        return result.rowcount == 1

    def delete(self, user_id, collection, key, expect=None):
        conditions = list(self._where(user_id, collection, key))

        if expect:
            row = self._fetch(user_id, collection, key)
            if row is None or not _matches(dict(row.data), expect):
                return False
            conditions.append(self.records_table.c.version == row.version)

        result = self.session.execute(
            self.records_table.delete().where(*conditions)
        )
        self.session.commit()
        return result.rowcount == 1

    def list(self, user_id, collection):
        table = self.records_table
        rows = self.session.execute(
            table.select().where(
                table.c.user_id == str(user_id),
                table.c.collection == collection
            ).order_by(table.c.created_at)
        ).fetchall()
        return [(row.key, dict(row.data)) for row in rows]

    def close(self):
        if hasattr(self.session, 'remove'):
            self.session.remove()
        else:
            self.session.close()
