"""In-memory domain state shared by the core services.

Storage engine is deliberately not prescribed; this keeps the records the
services mutate under their locks.
"""

import uuid
from typing import Dict

from civicstake.errors import UnknownAnswer, UnknownQuestion, UnknownUser
from civicstake.models.answer import Answer, Vote
from civicstake.models.question import Question
from civicstake.models.user import User


def new_id() -> str:
    return str(uuid.uuid4())


class CoreStore:
    def __init__(self) -> None:
        self.users: Dict[str, User] = {}
        self.questions: Dict[str, Question] = {}
        self.answers: Dict[str, Answer] = {}
        self.answer_by_question: Dict[str, str] = {}
        self.votes: Dict[tuple[str, str], Vote] = {}  # (answer_id, citizen_id)

    def user(self, user_id: str) -> User:
        user = self.users.get(user_id)
        if user is None:
            raise UnknownUser(f"Unknown user: {user_id}", user_id=user_id)
        return user

    def question(self, question_id: str) -> Question:
        question = self.questions.get(question_id)
        if question is None:
            raise UnknownQuestion("Question not found", question_id=question_id)
        return question

    def answer(self, answer_id: str) -> Answer:
        answer = self.answers.get(answer_id)
        if answer is None:
            raise UnknownAnswer("Answer not found", answer_id=answer_id)
        return answer

    def answer_for_question(self, question_id: str) -> Answer:
        answer_id = self.answer_by_question.get(question_id)
        if answer_id is None:
            raise UnknownAnswer("No answer found", question_id=question_id)
        return self.answers[answer_id]
