"""Domain errors raised by game commands.

Each carries the HTTP status the API answers with. Controllers catch
``GameError`` at the command boundary and show the message instead.
"""


class GameError(Exception):
    status_code = 400
    default_message = 'Request failed'

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_dict(self):
        return {'error': self.message}


class GameNotFound(GameError):
    status_code = 404
    default_message = 'Game not found'


class PlayerNotFound(GameError):
    status_code = 404
    default_message = 'Player not found'


class ValidationError(GameError):
    status_code = 400


class InvalidTransition(GameError):
    status_code = 409


class WithdrawInFlight(InvalidTransition):
    default_message = 'A withdrawal is already being processed'


class AlreadyWithdrawn(InvalidTransition):
    default_message = 'You have already withdrawn'


class WithdrawalsFrozen(GameError):
    """Simulated congestion failure once withdrawals freeze. Never retried."""
    status_code = 503
    default_message = 'Withdrawal failed: network congestion. Please try again later.'


class StoreError(GameError):
    """An insert or update could not be committed."""
    status_code = 500
    default_message = 'Storage failure'


class CommandFailed(GameError):
    status_code = 500
