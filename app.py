import os
from flask import (Blueprint, Flask, current_app, flash, jsonify, redirect,
                   render_template, request, session, url_for)
from dotenv import load_dotenv

from board import Board
from errors import PersistenceError, TaskBoardError
from model import db
from stores import make_store

# Load environment variables
load_dotenv()

bp = Blueprint('board', __name__)


def create_app(overrides=None):
    # Flask setup
    app = Flask(__name__, instance_relative_config=True, static_folder='static', template_folder='templates')

    # Ensure instance folder exists
    os.makedirs(app.instance_path, exist_ok=True)

    app.config['SECRET_KEY'] = os.getenv("FLASK_SECRET_KEY")
    app.config['SESSION_COOKIE_SECURE'] = os.getenv('SESSION_COOKIE_SECURE', 'True') == 'True'

    # Storage config
    app.config['TASKBOARD_STORAGE'] = os.getenv('TASKBOARD_STORAGE', 'hosted')
    app.config['TASKBOARD_DATA_FILE'] = os.getenv(
        'TASKBOARD_DATA_FILE', os.path.join(app.instance_path, 'taskboard.json'))
    app.config['SQLALCHEMY_DATABASE_URI'] = os.getenv(
        'TASKBOARD_DATABASE_URL', 'sqlite:///' + os.path.join(app.instance_path, 'tasks.db'))
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

    if overrides:
        app.config.update(overrides)

    if not app.config['SECRET_KEY']:
        raise RuntimeError("FLASK_SECRET_KEY not set in .env")

    # Unknown TASKBOARD_STORAGE raises here, before any database setup
    store = make_store(app, db)
    app.extensions['taskboard_store'] = store

    if app.config['TASKBOARD_STORAGE'] == 'hosted':
        db.init_app(app)
        with app.app_context():
            db.create_all()

    app.register_blueprint(bp)
    app.register_error_handler(TaskBoardError, handle_board_error)
    app.logger.info("Task board using %s storage", app.config['TASKBOARD_STORAGE'])
    return app


def get_board():
    return Board(current_app.extensions['taskboard_store'], session)


def loaded_board():
    board = get_board()
    board.load()
    return board


def handle_board_error(error):
    current_app.logger.info("%s %s: %s", request.method, request.path, error.message)
    if request.is_json or request.path.startswith('/api/'):
        return jsonify({'error': error.message}), error.status_code
    flash(error.message)
    return redirect(url_for('board.index'))


# Routes
@bp.route('/')
def index():
    board = get_board()
    try:
        board.load()
    except PersistenceError as e:
        # stay on the loading screen; the page retries on its own
        flash(e.message)
    if board.screen == 'login':
        return render_template('login.html', board=board)
    if board.screen == 'loading':
        return render_template('loading.html', board=board)
    incomplete, completed = board.columns()
    return render_template('board.html', board=board, incomplete=incomplete, completed=completed)


@bp.route('/api/board')
def api_board():
    return jsonify(loaded_board().to_dict())


@bp.route('/register', methods=['POST'])
def register():
    board = loaded_board()
    board.register(request.form.get('name'), request.form.get('email'))
    return redirect(url_for('board.index'))


@bp.route('/login', methods=['POST'])
def login():
    board = loaded_board()
    board.login(request.form.get('user_id'))
    return redirect(url_for('board.index'))


@bp.route('/logout')
def logout():
    get_board().logout()
    return redirect(url_for('board.index'))


@bp.route('/add', methods=['POST'])
def add_task():
    board = loaded_board()
    board.add_task(request.form.get('text'))
    return redirect(url_for('board.index'))


@bp.route('/toggle/<int:id>', methods=['POST'])
def toggle_task(id):
    board = loaded_board()
    board.toggle_task(id)
    return redirect(url_for('board.index'))


@bp.route('/drop/<int:id>', methods=['POST'])
def drop_task(id):
    data = request.get_json(silent=True) or {}
    if not isinstance(data.get('completed'), bool):
        return jsonify({'error': "completed must be true or false"}), 400
    board = loaded_board()
    task = board.drop_task(id, data['completed'])
    if task is None:
        return jsonify({'task': board.get_task(id), 'changed': False})
    return jsonify({'task': task, 'changed': True})


@bp.route('/delete/<int:id>', methods=['POST'])
def delete_task(id):
    board = loaded_board()
    board.delete_task(id)
    return redirect(url_for('board.index'))


@bp.route('/comment/<int:task_id>', methods=['POST'])
def add_comment(task_id):
    board = loaded_board()
    board.add_comment(task_id, request.form.get('content'))
    return redirect(url_for('board.index'))


if __name__ == '__main__':
    create_app().run(debug=True)
