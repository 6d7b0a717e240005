"""
View state for one visitor's task board.

A Board holds what the page shows (users, current user, that user's tasks and
their comments) and keeps it in step with the store: every operation makes one
store call and folds the store's answer back into the view.
"""
import logging

from errors import NotFoundError, PersistenceError, ValidationError

log = logging.getLogger(__name__)

SESSION_KEY = 'user_id'


def _clean(value):
    return (value or '').strip()


class Board:

    def __init__(self, store, session):
        self.store = store
        self.session = session
        self.users = []
        self.current_user = None
        self.tasks = []
        self.comments = []
        self.loaded = False
        self.fetch_failed = False

    @property
    def screen(self):
        if self.fetch_failed:
            return 'loading'
        if self.current_user is None:
            return 'login'
        if not self.loaded:
            return 'loading'
        return 'board'

    def load(self):
        """Fetch users, resolve the session pointer, then fetch the board."""
        self.loaded = False
        self.fetch_failed = False
        try:
            self._load()
        except PersistenceError:
            self.fetch_failed = True
            raise
        self.loaded = True

    def _load(self):
        self.users = self.store.list_users()
        self.current_user = None
        user_id = self.session.get(SESSION_KEY)
        if user_id is not None:
            self.current_user = next((u for u in self.users if u['id'] == user_id), None)
            if self.current_user is None:
                log.info("Dropping session pointer to missing user %s", user_id)
                self.session.pop(SESSION_KEY, None)
        self._fetch_board()

    def _fetch_board(self):
        if self.current_user is None:
            self.tasks, self.comments = [], []
            return
        self.tasks = self.store.list_tasks(self.current_user['id'])
        self.comments = self.store.list_comments([t['id'] for t in self.tasks])

    def _set_current(self, user):
        self.current_user = user
        self.session[SESSION_KEY] = user['id']
        self.loaded = False
        self._fetch_board()
        self.loaded = True

    def register(self, name, email):
        name, email = _clean(name), _clean(email)
        if not name or not email:
            raise ValidationError("Please enter both a name and an email address.")
        user = self.store.create_user(name, email)
        log.info("Registered user %s", user['id'])
        self.users.append(user)
        self._set_current(user)
        return user

    def login(self, user_id):
        try:
            user_id = int(user_id)
        except (TypeError, ValueError):
            raise ValidationError("Please select a user.")
        user = self.store.get_user(user_id)
        if user is None:
            raise NotFoundError("That user no longer exists.")
        self._set_current(user)
        return user

    def logout(self):
        self.current_user = None
        self.tasks, self.comments = [], []
        self.session.pop(SESSION_KEY, None)

    def get_task(self, task_id):
        for task in self.tasks:
            if task['id'] == task_id:
                return task
        raise NotFoundError("Task not found.")

    def _replace_task(self, updated):
        self.tasks = [updated if t['id'] == updated['id'] else t for t in self.tasks]

    def add_task(self, text):
        text = _clean(text)
        if self.current_user is None or not text:
            return None
        task = self.store.create_task(self.current_user['id'], text)
        self.tasks.append(task)
        return task

    def toggle_task(self, task_id):
        task = self.get_task(task_id)
        updated = self.store.update_task(task_id, not task['completed'])
        self._replace_task(updated)
        return updated

    def drop_task(self, task_id, completed):
        """Move a task to the completed or incomplete column.

        Dropping onto the column the task is already in changes nothing and
        returns None.
        """
        task = self.get_task(task_id)
        if task['completed'] == bool(completed):
            return None
        updated = self.store.update_task(task_id, bool(completed))
        self._replace_task(updated)
        return updated

    def delete_task(self, task_id):
        self.get_task(task_id)
        self.store.delete_task(task_id)
        self.tasks = [t for t in self.tasks if t['id'] != task_id]
        # stores cascade too; the view must not keep orphans either way
        self.comments = [c for c in self.comments if c['task_id'] != task_id]

    def add_comment(self, task_id, text):
        text = _clean(text)
        if self.current_user is None or not text:
            return None
        self.get_task(task_id)
        comment = self.store.create_comment(task_id, self.current_user['id'],
                                            self.current_user['name'], text)
        self.comments.append(comment)
        return comment

    def columns(self):
        incomplete = [t for t in self.tasks if not t['completed']]
        completed = [t for t in self.tasks if t['completed']]
        return incomplete, completed

    def comments_for(self, task_id):
        return [c for c in self.comments if c['task_id'] == task_id]

    def to_dict(self):
        return {
            'screen': self.screen,
            'users': self.users,
            'current_user': self.current_user,
            'tasks': self.tasks,
            'comments': self.comments,
        }
