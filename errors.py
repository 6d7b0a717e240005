class TaskBoardError(Exception):
    """Base class for errors shown to the user as an alert."""
    status_code = 400
    message = "Something went wrong. Please try again."

    def __init__(self, message=None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class ValidationError(TaskBoardError):
    status_code = 400


class DuplicateEmailError(TaskBoardError):
    status_code = 409
    message = "That email address is already registered."


class NotFoundError(TaskBoardError):
    status_code = 404
    message = "Not found."


class PersistenceError(TaskBoardError):
    status_code = 500
