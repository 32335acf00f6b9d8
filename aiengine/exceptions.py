class InvalidWebhookEvent(Exception):
    """
    A webhook payload that cannot be turned into an event.

    ``code`` is the machine-readable status answered to the gateway,
    ``message`` the human-readable reason.
    """

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    def as_dict(self) -> dict:
        return {'success': False, 'status': self.code, 'error': self.message}
