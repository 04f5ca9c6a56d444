from app.db.repo.live_answers_repo import LiveAnswersRepo
from app.db.repo.live_participants_repo import LiveParticipantsRepo
from app.db.repo.live_questions_repo import LiveQuestionsRepo
from app.db.repo.live_rooms_repo import LiveRoomsRepo

__all__ = [
    "LiveAnswersRepo",
    "LiveParticipantsRepo",
    "LiveQuestionsRepo",
    "LiveRoomsRepo",
]
