from app.db.models.live_answers import LiveAnswer
from app.db.models.live_participants import LiveParticipant
from app.db.models.live_questions import LiveQuestion
from app.db.models.live_rooms import LiveRoom

__all__ = [
    "LiveAnswer",
    "LiveParticipant",
    "LiveQuestion",
    "LiveRoom",
]
