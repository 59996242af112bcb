"""Error taxonomy shared by the lobby services and the HTTP/socket layers.

Every error carries the HTTP status the API answers with and a short
``kind`` string clients can switch on. Guard and capacity errors are final
for the calling operation; only ``TransientIOError`` is worth retrying.
"""


class BetPartyError(Exception):
    status_code = 400
    kind = 'error'
    default_message = 'Something went wrong'

    def __init__(self, message=None, **details):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details

    def to_dict(self):
        return error_payload(self)


class ValidationError(BetPartyError):
    status_code = 400
    kind = 'validation'
    default_message = 'Invalid request'


class AuthError(BetPartyError):
    status_code = 403
    kind = 'auth'
    default_message = 'You are not allowed to do that'


class NotAuthenticated(AuthError):
    status_code = 401
    kind = 'not_authenticated'
    default_message = 'You need to be signed in'


class NotFoundError(BetPartyError):
    status_code = 404
    kind = 'not_found'
    default_message = 'Not found'


class CapacityError(BetPartyError):
    status_code = 409
    kind = 'capacity'
    default_message = 'Capacity reached'


class LobbyFull(CapacityError):
    kind = 'lobby_full'
    default_message = 'This lobby is full'


class StateError(BetPartyError):
    status_code = 409
    kind = 'state'
    default_message = 'Not allowed in the current state'


class LobbyClosed(StateError):
    kind = 'lobby_closed'
    default_message = 'This lobby is closed'


class NoActiveQuestion(StateError):
    kind = 'no_active_question'
    default_message = 'There is no active question to answer'


class AlreadyAnswered(StateError):
    kind = 'already_answered'
    default_message = 'You already answered this question'


class QuestionExpired(StateError):
    kind = 'question_expired'
    default_message = 'Time is up for this question'


class InvalidTransition(StateError):
    kind = 'invalid_transition'
    default_message = 'That lobby transition is not allowed'


class NotSettled(StateError):
    kind = 'not_settled'
    default_message = 'This lobby has not been settled yet'


class ConflictError(BetPartyError):
    status_code = 409
    kind = 'conflict'
    default_message = 'Someone else changed this lobby, try again'


class TransientIOError(BetPartyError):
    status_code = 503
    kind = 'io'
    default_message = 'The record store is unavailable, try again'


class UpdateFailed(TransientIOError):
    kind = 'update_failed'
    default_message = 'Could not save your answer, try again'


def user_message(err) -> str:
    """Human readable text for any error a lobby action can raise."""
    if err is None:
        return 'Unknown error'
    if isinstance(err, BetPartyError):
        return err.message
    text = str(err).strip()
    return text or err.__class__.__name__


def error_payload(err) -> dict:
    """JSON body sent to HTTP and socket clients for a failed action."""
    payload = {'error': user_message(err), 'kind': getattr(err, 'kind', 'error')}
    details = getattr(err, 'details', None)
    if details:
        payload['details'] = details
    return payload
