class ApiError(Exception):
    status_code = 400

    def __init__(self, message, status_code=None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class NotFoundError(ApiError):
    status_code = 404
