"""
Error taxonomy for the social relationship layer.

Every rule violation raised by the store or the relationship service is a
SocialError subclass carrying a stable ``code`` and the HTTP status the API
layer renders it with.
"""


class SocialError(Exception):
    code = 'social_error'
    status_code = 400
    default_message = 'Social operation failed'

    def __init__(self, message: str = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_dict(self) -> dict:
        return {'detail': self.message, 'code': self.code}


class InvalidTarget(SocialError):
    code = 'invalid_target'
    status_code = 400
    default_message = 'You cannot target yourself'


class NotFound(SocialError):
    code = 'not_found'
    status_code = 404
    default_message = 'Not found'


class Conflict(SocialError):
    code = 'conflict'
    status_code = 409
    default_message = 'Relationship already exists'


class AlreadyFriends(Conflict):
    code = 'already_friends'
    default_message = 'You are already friends with this user'


class RequestAlreadyPending(Conflict):
    code = 'request_already_pending'
    default_message = 'A friend request is already pending with this user'


class PreviouslyDeclined(Conflict):
    code = 'previously_declined'
    default_message = 'This user has declined your friend request'


class Blocked(SocialError):
    code = 'blocked'
    status_code = 403
    default_message = 'This action is not allowed because of a block'


class Forbidden(SocialError):
    code = 'forbidden'
    status_code = 403
    default_message = 'You are not allowed to perform this action'


class StoreUnavailable(SocialError):
    code = 'store_unavailable'
    status_code = 503
    default_message = 'Relationship store is unavailable'


class InvalidRequest(SocialError):
    code = 'invalid_request'
    status_code = 400
    default_message = 'Invalid request'
