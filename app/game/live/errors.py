class LiveGameError(Exception):
    pass


class RoomNotFoundError(LiveGameError):
    pass


class EmptyQuestionSetError(LiveGameError):
    pass


class ClockParseError(LiveGameError, ValueError):
    pass


class StoreUnavailableError(LiveGameError):
    pass


class RoomMutationError(LiveGameError):
    pass


class RoomCodeExhaustedError(LiveGameError):
    pass


class NotHostError(LiveGameError):
    pass


class InvalidRoomSettingsError(LiveGameError, ValueError):
    pass


class RoomFinishedError(LiveGameError):
    pass


class RoomCodeTakenError(LiveGameError):
    pass
