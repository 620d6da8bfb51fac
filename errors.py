"""
Domain errors raised by the service layer.
Route handlers let them propagate; app.py renders them as JSON.
"""


class LearnityError(Exception):
    """Base error carrying a machine readable code and HTTP status"""
    status_code = 400
    code = 'BAD_REQUEST'

    def __init__(self, message, code=None, status_code=None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {'error': self.message, 'code': self.code}


class EnrollmentError(LearnityError):
    pass


class ProgressError(LearnityError):
    pass


class QuizError(LearnityError):
    pass


class GamificationError(LearnityError):
    pass


class ApplicationError(LearnityError):
    pass


class MessagingError(LearnityError):
    pass


class CatalogError(LearnityError):
    pass
