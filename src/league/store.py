"""
Document store client.

A thin wrapper over a document database keyed by collection name and
document id. Two backends share one contract:

    YamlDocumentStore   one YAML file per collection, guarded by a file lock
    MongoDocumentStore  MongoDB through pymongo

No retries are performed here; callers decide. Backend failures surface as
``NotFound``, ``PermissionDenied`` or ``Unavailable``.
"""
import logging
import operator
import os
import uuid
from contextlib import contextmanager

import yaml
from filelock import FileLock, Timeout
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import OperationFailure, PyMongoError

from league.errors import NotFound, PermissionDenied, Unavailable, ValidationError

logger = logging.getLogger(__name__)

TEAMS = 'teams'
PLAYERS = 'players'
MATCHES = 'matches'
PLAYOFF_MATCHES = 'playoffMatches'
STANDINGS = 'standings'
USERS = 'users'
SETTINGS = 'settings'
INSIGHTS = 'insights'

COLLECTIONS = (TEAMS, PLAYERS, MATCHES, PLAYOFF_MATCHES, STANDINGS, USERS, SETTINGS, INSIGHTS)

_OPERATORS = {
    '==': operator.eq,
    '!=': operator.ne,
    '<': operator.lt,
    '<=': operator.le,
    '>': operator.gt,
    '>=': operator.ge,
}

_MONGO_OPERATORS = {
    '!=': '$ne',
    '<': '$lt',
    '<=': '$lte',
    '>': '$gt',
    '>=': '$gte',
}


def new_id() -> str:
    return uuid.uuid4().hex


def _check_collection(collection: str):
    if collection not in COLLECTIONS:
        raise ValidationError(f'Unknown collection {collection!r}')


def _check_where(where):
    for clause in where or ():
        if len(clause) != 3 or clause[1] not in _OPERATORS:
            raise ValidationError(f'Invalid query clause {clause!r}')


class DocumentStore:
    """Contract shared by the store backends."""

    def get(self, collection: str, doc_id: str) -> dict:
        raise NotImplementedError

    def query(self, collection: str, where=None, order_by=None, limit: int = None) -> list:
        raise NotImplementedError

    def count(self, collection: str, where=None) -> int:
        return len(self.query(collection, where=where))

    def add(self, collection: str, data: dict) -> str:
        raise NotImplementedError

    def set(self, collection: str, doc_id: str, data: dict):
        raise NotImplementedError

    def update(self, collection: str, doc_id: str, partial: dict):
        raise NotImplementedError

    def delete(self, collection: str, doc_id: str):
        raise NotImplementedError

    def close(self):
        pass


def _matches(doc: dict, where) -> bool:
    for field, op, value in where or ():
        current = doc.get(field)
        if op == '==' or op == '!=':
            if not _OPERATORS[op](current, value):
                return False
            continue
        # Range comparisons never match missing fields
        if current is None:
            return False
        try:
            if not _OPERATORS[op](current, value):
                return False
        except TypeError:
            return False
    return True


def _sort_documents(docs: list, order_by) -> list:
    # Stable sorts applied from the least to the most significant field;
    # documents missing the field always go last
    for field, direction in reversed(list(order_by or ())):
        present = [d for d in docs if d.get(field) is not None]
        missing = [d for d in docs if d.get(field) is None]
        present.sort(key=lambda d: d[field], reverse=direction == 'desc')
        docs = present + missing
    return docs


class YamlDocumentStore(DocumentStore):
    """File-backed store: ``<data_dir>/<collection>.yaml`` maps id -> document."""

    def __init__(self, data_dir: str, lock_timeout: float = 10):
        self.data_dir = data_dir
        os.makedirs(data_dir, exist_ok=True)
        self._lock = FileLock(os.path.join(data_dir, '.store.lock'), timeout=lock_timeout)

    def _path(self, collection: str) -> str:
        return os.path.join(self.data_dir, f'{collection}.yaml')

    def _load(self, collection: str) -> dict:
        path = self._path(collection)
        if not os.path.exists(path):
            return {}
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except PermissionError as e:
            raise PermissionDenied(str(e), collection=collection) from e
        except yaml.YAMLError as e:
            raise Unavailable(f'Corrupt collection file: {e}', collection=collection) from e
        except OSError as e:
            raise Unavailable(str(e), collection=collection) from e
        return data or {}

    def _save(self, collection: str, docs: dict):
        path = self._path(collection)
        tmp_path = path + '.tmp'
        try:
            with open(tmp_path, 'w', encoding='utf-8') as f:
                yaml.safe_dump(docs, f, default_flow_style=False, allow_unicode=True)
            os.replace(tmp_path, path)
        except PermissionError as e:
            raise PermissionDenied(str(e), collection=collection) from e
        except OSError as e:
            raise Unavailable(str(e), collection=collection) from e

    @contextmanager
    def _write_lock(self):
        try:
            with self._lock:
                yield
        except Timeout as e:
            raise Unavailable(f'Timed out waiting for store lock {self._lock.lock_file}') from e

    def get(self, collection: str, doc_id: str) -> dict:
        _check_collection(collection)
        docs = self._load(collection)
        if doc_id not in docs:
            raise NotFound('Document not found', collection=collection, doc_id=doc_id)
        return {'id': doc_id, **docs[doc_id]}

    def query(self, collection: str, where=None, order_by=None, limit: int = None) -> list:
        _check_collection(collection)
        _check_where(where)
        docs = [{'id': doc_id, **doc} for doc_id, doc in self._load(collection).items()]
        result = _sort_documents([d for d in docs if _matches(d, where)], order_by)
        if limit is not None:
            result = result[:limit]
        return result

    def add(self, collection: str, data: dict) -> str:
        _check_collection(collection)
        doc_id = new_id()
        with self._write_lock():
            docs = self._load(collection)
            docs[doc_id] = dict(data)
            self._save(collection, docs)
        logger.debug(f'Added {collection}/{doc_id}')
        return doc_id

    def set(self, collection: str, doc_id: str, data: dict):
        _check_collection(collection)
        with self._write_lock():
            docs = self._load(collection)
            docs[doc_id] = {k: v for k, v in data.items() if k != 'id'}
            self._save(collection, docs)

    def update(self, collection: str, doc_id: str, partial: dict):
        _check_collection(collection)
        with self._write_lock():
            docs = self._load(collection)
            if doc_id not in docs:
                raise NotFound('Document not found', collection=collection, doc_id=doc_id)
            docs[doc_id].update({k: v for k, v in partial.items() if k != 'id'})
            self._save(collection, docs)

    def delete(self, collection: str, doc_id: str):
        _check_collection(collection)
        with self._write_lock():
            docs = self._load(collection)
            if docs.pop(doc_id, None) is not None:
                self._save(collection, docs)


class MongoDocumentStore(DocumentStore):
    """MongoDB backend. Documents use the string id as ``_id``."""

    def __init__(self, connection_url: str, database: str, client=None):
        self.client = client if client is not None else MongoClient(connection_url,
                                                                    serverSelectionTimeoutMS=5000)
        self.db = self.client[database]

    def create_indexes(self):
        """Create the indexes the league queries rely on."""
        with self._errors('indexes'):
            self.db[PLAYOFF_MATCHES].create_index([('round', ASCENDING), ('matchNumber', ASCENDING)])
            self.db[INSIGHTS].create_index([('type', ASCENDING), ('relatedId', ASCENDING),
                                            ('createdAt', DESCENDING)])
            self.db[MATCHES].create_index([('date', ASCENDING)])
            self.db[PLAYERS].create_index([('teamId', ASCENDING)])
            self.db[STANDINGS].create_index([('teamId', ASCENDING)])
            self.db[USERS].create_index([('role', ASCENDING)])
            self.db[USERS].create_index([('email', ASCENDING)])
        logger.info('MongoDB indexes created')

    def _errors(self, collection: str, doc_id: str = None):
        return _MongoErrors(collection, doc_id)

    @staticmethod
    def _to_filter(where) -> dict:
        mongo_filter = {}
        for field, op, value in where or ():
            if op == '==':
                condition = value
            else:
                condition = {_MONGO_OPERATORS[op]: value}
            if field in mongo_filter and isinstance(mongo_filter[field], dict) and isinstance(condition, dict):
                mongo_filter[field].update(condition)
            else:
                mongo_filter[field] = condition
        return mongo_filter

    @staticmethod
    def _from_mongo(doc: dict) -> dict:
        doc = dict(doc)
        doc['id'] = str(doc.pop('_id'))
        return doc

    def get(self, collection: str, doc_id: str) -> dict:
        _check_collection(collection)
        with self._errors(collection, doc_id):
            doc = self.db[collection].find_one({'_id': doc_id})
        if doc is None:
            raise NotFound('Document not found', collection=collection, doc_id=doc_id)
        return self._from_mongo(doc)

    def query(self, collection: str, where=None, order_by=None, limit: int = None) -> list:
        _check_collection(collection)
        _check_where(where)
        with self._errors(collection):
            cursor = self.db[collection].find(self._to_filter(where))
            if order_by:
                cursor = cursor.sort([(field, DESCENDING if direction == 'desc' else ASCENDING)
                                      for field, direction in order_by])
            if limit is not None:
                cursor = cursor.limit(limit)
            return [self._from_mongo(doc) for doc in cursor]

    def count(self, collection: str, where=None) -> int:
        _check_collection(collection)
        _check_where(where)
        with self._errors(collection):
            return self.db[collection].count_documents(self._to_filter(where))

    def add(self, collection: str, data: dict) -> str:
        _check_collection(collection)
        doc_id = new_id()
        with self._errors(collection, doc_id):
            self.db[collection].insert_one({**{k: v for k, v in data.items() if k != 'id'}, '_id': doc_id})
        return doc_id

    def set(self, collection: str, doc_id: str, data: dict):
        _check_collection(collection)
        body = {k: v for k, v in data.items() if k != 'id'}
        with self._errors(collection, doc_id):
            self.db[collection].replace_one({'_id': doc_id}, body, upsert=True)

    def update(self, collection: str, doc_id: str, partial: dict):
        _check_collection(collection)
        body = {k: v for k, v in partial.items() if k != 'id'}
        with self._errors(collection, doc_id):
            result = self.db[collection].update_one({'_id': doc_id}, {'$set': body})
        if result.matched_count == 0:
            raise NotFound('Document not found', collection=collection, doc_id=doc_id)

    def delete(self, collection: str, doc_id: str):
        _check_collection(collection)
        with self._errors(collection, doc_id):
            self.db[collection].delete_one({'_id': doc_id})

    def close(self):
        self.client.close()


class _MongoErrors:
    """Translate pymongo exceptions into store errors."""

    # MongoDB "Unauthorized" and "AuthenticationFailed" server codes
    PERMISSION_CODES = {13, 18}

    def __init__(self, collection: str, doc_id: str = None):
        self.collection = collection
        self.doc_id = doc_id

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc is None:
            return False
        if isinstance(exc, OperationFailure) and exc.code in self.PERMISSION_CODES:
            raise PermissionDenied(str(exc), collection=self.collection, doc_id=self.doc_id) from exc
        if isinstance(exc, PyMongoError):
            raise Unavailable(str(exc), collection=self.collection, doc_id=self.doc_id) from exc
        return False


def create_store(config) -> DocumentStore:
    """Build the store selected by the configuration."""
    if config.store_backend == 'mongo':
        store = MongoDocumentStore(config.mongodb_url, config.mongodb_database)
        try:
            store.create_indexes()
        except Unavailable as e:
            logger.warning(f'Could not create MongoDB indexes: {e}')
        logger.info(f'Using MongoDB store, database {config.mongodb_database}')
        return store
    logger.info(f'Using YAML store in {config.data_dir}')
    return YamlDocumentStore(config.data_dir)
