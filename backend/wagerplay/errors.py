"""Domain errors shared by the HTTP routes and the socket gateway.

Every error has a stable snake_case ``code`` that clients switch on, a human
readable ``message`` and the HTTP status used when it surfaces over REST.
State-conflict errors also carry the authoritative match so a client can
resync its board.
"""


class GameError(Exception):
    """Base class for every rejected operation."""

    code = 'game_error'
    http_status = 400

    def __init__(self, message: str, match=None) -> None:
        self.message = message
        self.match = match
        super().__init__(message)

    def to_dict(self) -> dict:
        payload = {'code': self.code, 'message': self.message}
        if self.match is not None:
            payload['match'] = self.match.to_dict()
        return payload


# --- validation ---

class InvalidBet(GameError):
    code = 'invalid_bet'

    def __init__(self, amount, min_bet: int, max_bet: int) -> None:
        super().__init__(f"Bet must be a whole amount between {min_bet} and {max_bet}, got {amount!r}")


class MalformedPayload(GameError):
    code = 'malformed_payload'


class InvalidIndex(GameError):
    code = 'invalid_index'

    def __init__(self, index, match=None) -> None:
        super().__init__(f"Cell index must be an integer 0-8, got {index!r}", match)


# --- state conflicts ---

class NotYourTurn(GameError):
    code = 'not_your_turn'
    http_status = 409

    def __init__(self, match=None) -> None:
        super().__init__('Not your turn', match)


class NotAPlayer(GameError):
    code = 'not_a_player'
    http_status = 403

    def __init__(self, match=None) -> None:
        super().__init__('You are not a player in this match', match)


class MatchNotJoinable(GameError):
    code = 'match_not_joinable'
    http_status = 409

    def __init__(self, match=None) -> None:
        super().__init__('This match is not open for joining', match)


class SelfJoin(GameError):
    code = 'self_join'
    http_status = 409

    def __init__(self, match=None) -> None:
        super().__init__('You cannot join your own match', match)


class GameNotActive(GameError):
    code = 'game_not_active'
    http_status = 409

    def __init__(self, match=None) -> None:
        super().__init__('Game is not active', match)


class IllegalMove(GameError):
    code = 'illegal_move'
    http_status = 409

    def __init__(self, index: int, match=None) -> None:
        super().__init__(f"Cell {index} is already filled", match)


class TransactionNotPending(GameError):
    code = 'transaction_not_pending'
    http_status = 409

    def __init__(self, transaction_id: int) -> None:
        super().__init__(f"Transaction {transaction_id} is no longer pending")


# --- resources ---

class InsufficientFunds(GameError):
    code = 'insufficient_funds'
    http_status = 422

    def __init__(self, required: int, available=None, match=None) -> None:
        if available is None:
            message = f"Insufficient balance: {required} required"
        else:
            message = f"Insufficient balance: {required} required, {available} available"
        super().__init__(message, match)


# --- not found ---

class MatchNotFound(GameError):
    code = 'match_not_found'
    http_status = 404

    def __init__(self, match_id: str) -> None:
        super().__init__(f"Match not found: {match_id}")


class UnknownUser(GameError):
    code = 'unknown_user'
    http_status = 404

    def __init__(self, user_id) -> None:
        super().__init__(f"Unknown or inactive user: {user_id}")


class InviteNotFound(GameError):
    code = 'invite_not_found'
    http_status = 404

    def __init__(self, match_id: str) -> None:
        super().__init__(f"No pending invite for match {match_id}")


class TransactionNotFound(GameError):
    code = 'transaction_not_found'
    http_status = 404

    def __init__(self, transaction_id) -> None:
        super().__init__(f"Transaction not found: {transaction_id}")


# --- authorization ---

class Forbidden(GameError):
    code = 'forbidden'
    http_status = 403
