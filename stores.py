"""
Persistence adapters for the task board.

Every store exposes the same methods and exchanges plain dicts with
snake_case keys, ordered by ``id``:

    MemoryStore    lists in process memory, lost on restart
    JsonFileStore  the same lists mirrored to one JSON file after each change
    SqlStore       users/tasks/comments tables through Flask-SQLAlchemy
"""
import json
import logging
import os
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from errors import DuplicateEmailError, NotFoundError, PersistenceError
from model import Comment, Task, User

log = logging.getLogger(__name__)

STORAGE_BACKENDS = ('memory', 'local', 'hosted')

# PostgreSQL SQLSTATE for unique_violation
UNIQUE_VIOLATION = '23505'


def _now():
    return datetime.now(timezone.utc).isoformat()


class MemoryStore:
    """In-process store. Ids come from a counter, never from the clock."""

    def __init__(self):
        self._lock = threading.RLock()
        self.users = []
        self.tasks = []
        self.comments = []
        self.last_id = 0

    def _next_id(self):
        self.last_id += 1
        return self.last_id

    def _commit(self):
        pass

    def _find_task(self, task_id):
        for task in self.tasks:
            if task['id'] == task_id:
                return task
        raise NotFoundError("Task not found.")

    def list_users(self):
        with self._lock:
            return [dict(u) for u in self.users]

    def get_user(self, user_id):
        with self._lock:
            for user in self.users:
                if user['id'] == user_id:
                    return dict(user)
        return None

    def create_user(self, name, email):
        with self._lock:
            user = {'id': self._next_id(), 'name': name, 'email': email,
                    'created_at': _now()}
            self.users.append(user)
            self._commit()
            return dict(user)

    def list_tasks(self, user_id):
        with self._lock:
            return [dict(t) for t in self.tasks if t['user_id'] == user_id]

    def create_task(self, user_id, text):
        with self._lock:
            task = {'id': self._next_id(), 'user_id': user_id, 'text': text,
                    'completed': False, 'created_at': _now()}
            self.tasks.append(task)
            self._commit()
            return dict(task)

    def update_task(self, task_id, completed):
        with self._lock:
            task = self._find_task(task_id)
            task['completed'] = bool(completed)
            self._commit()
            return dict(task)

    def delete_task(self, task_id):
        with self._lock:
            task = self._find_task(task_id)
            self.tasks.remove(task)
            self.comments = [c for c in self.comments if c['task_id'] != task_id]
            self._commit()

    def list_comments(self, task_ids):
        wanted = set(task_ids)
        with self._lock:
            return [dict(c) for c in self.comments if c['task_id'] in wanted]

    def create_comment(self, task_id, user_id, user_name, content):
        with self._lock:
            comment = {'id': self._next_id(), 'task_id': task_id,
                       'user_id': user_id, 'user_name': user_name,
                       'content': content, 'created_at': _now()}
            self.comments.append(comment)
            self._commit()
            return dict(comment)


# Field names used in the JSON file, per record kind
_USER_FIELDS = {'created_at': 'createdAt'}
_TASK_FIELDS = {'user_id': 'userId', 'created_at': 'createdAt'}
_COMMENT_FIELDS = {'task_id': 'taskId', 'user_id': 'userId',
                   'user_name': 'userName', 'created_at': 'timestamp'}


def _rename(record, fields):
    return {fields.get(k, k): v for k, v in record.items()}


def _reverse(fields):
    return {v: k for k, v in fields.items()}


def _as_int(value):
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


class JsonFileStore(MemoryStore):
    """MemoryStore mirrored to a JSON file with keys users, tasks, comments, lastId."""

    def __init__(self, path):
        super().__init__()
        self.path = Path(path)
        self._load()

    def _load(self):
        self.users, self.tasks, self.comments, self.last_id = [], [], [], 0
        if not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text(encoding='utf-8'))
            users = [_rename(u, _reverse(_USER_FIELDS)) for u in data.get('users', [])]
            tasks = [_rename(t, _reverse(_TASK_FIELDS)) for t in data.get('tasks', [])]
            comments = [_rename(c, _reverse(_COMMENT_FIELDS)) for c in data.get('comments', [])]
            ids = [int(r['id']) for r in users + tasks + comments]
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            self._set_aside(e)
            return
        self.users, self.tasks, self.comments = users, tasks, comments
        # lastId only ever moves the counter forward; the record ids are authoritative
        self.last_id = max([_as_int(data.get('lastId'))] + ids)
        log.debug("Loaded %d users, %d tasks, %d comments from %s",
                  len(self.users), len(self.tasks), len(self.comments), self.path)

    def _set_aside(self, error):
        """Move an unreadable data file out of the way so it is never overwritten."""
        aside = self.path.with_suffix(self.path.suffix + '.corrupt')
        try:
            os.replace(self.path, aside)
        except OSError as e:
            log.exception("Could not move unreadable data file %s aside", self.path)
            raise PersistenceError() from e
        log.warning("Unreadable data file %s (%s); moved to %s, starting empty",
                    self.path, error, aside)

    def _commit(self):
        data = {
            'users': [_rename(u, _USER_FIELDS) for u in self.users],
            'tasks': [_rename(t, _TASK_FIELDS) for t in self.tasks],
            'comments': [_rename(c, _COMMENT_FIELDS) for c in self.comments],
            'lastId': self.last_id,
        }
        tmp = self.path.with_suffix(self.path.suffix + '.tmp')
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding='utf-8')
            os.replace(tmp, self.path)
        except OSError as e:
            log.exception("Could not write %s", self.path)
            # keep memory in step with what is actually on disk
            self._load()
            raise PersistenceError() from e


def _is_unique_violation(error):
    orig = getattr(error, 'orig', None)
    code = getattr(orig, 'pgcode', None) or getattr(orig, 'sqlstate', None)
    if code == UNIQUE_VIOLATION:
        return True
    return 'UNIQUE constraint failed' in str(orig)


class SqlStore:
    """Store backed by the users, tasks and comments tables."""

    def __init__(self, db):
        self.db = db

    @contextmanager
    def _session(self, action, commit=False):
        try:
            yield self.db.session
            if commit:
                self.db.session.commit()
        except IntegrityError as e:
            self.db.session.rollback()
            if _is_unique_violation(e):
                log.info("%s rejected: duplicate key", action)
                raise DuplicateEmailError() from e
            log.exception("%s failed", action)
            raise PersistenceError() from e
        except SQLAlchemyError as e:
            self.db.session.rollback()
            log.exception("%s failed", action)
            raise PersistenceError() from e

    @staticmethod
    def _read_back(session, obj):
        # stored values as the database returns them, read before the commit
        session.flush()
        session.refresh(obj)
        return obj.to_dict()

    def list_users(self):
        with self._session("list users"):
            return [u.to_dict() for u in User.query.order_by(User.id).all()]

    def get_user(self, user_id):
        with self._session("get user"):
            user = self.db.session.get(User, user_id)
            return user.to_dict() if user else None

    def create_user(self, name, email):
        with self._session("create user", commit=True) as session:
            user = User(name=name, email=email)
            session.add(user)
            record = self._read_back(session, user)
        return record

    def list_tasks(self, user_id):
        with self._session("list tasks"):
            tasks = Task.query.filter_by(user_id=user_id).order_by(Task.id).all()
            return [t.to_dict() for t in tasks]

    def create_task(self, user_id, text):
        with self._session("create task", commit=True) as session:
            task = Task(user_id=user_id, text=text, completed=False)
            session.add(task)
            record = self._read_back(session, task)
        return record

    def update_task(self, task_id, completed):
        with self._session("update task", commit=True) as session:
            task = session.get(Task, task_id)
            if task is None:
                raise NotFoundError("Task not found.")
            task.completed = bool(completed)
            record = self._read_back(session, task)
        return record

    def delete_task(self, task_id):
        with self._session("delete task", commit=True) as session:
            task = session.get(Task, task_id)
            if task is None:
                raise NotFoundError("Task not found.")
            session.delete(task)

    def list_comments(self, task_ids):
        task_ids = list(task_ids)
        if not task_ids:
            return []
        with self._session("list comments"):
            comments = (Comment.query.filter(Comment.task_id.in_(task_ids))
                        .order_by(Comment.id).all())
            return [c.to_dict() for c in comments]

    def create_comment(self, task_id, user_id, user_name, content):
        with self._session("create comment", commit=True) as session:
            comment = Comment(task_id=task_id, user_id=user_id,
                              user_name=user_name, content=content)
            session.add(comment)
            record = self._read_back(session, comment)
        return record


def make_store(app, db=None):
    """Build the store named by app.config['TASKBOARD_STORAGE']."""
    backend = app.config['TASKBOARD_STORAGE']
    if backend == 'memory':
        return MemoryStore()
    if backend == 'local':
        return JsonFileStore(app.config['TASKBOARD_DATA_FILE'])
    if backend == 'hosted':
        return SqlStore(db)
    raise ValueError(f"Unknown TASKBOARD_STORAGE {backend!r}; "
                     f"expected one of {', '.join(STORAGE_BACKENDS)}")
