"""
Question sources: the Gemini-backed generator and the local fallback table.
"""
import logging
import random
from typing import Dict, List, Optional

from ..config import COMPANY, JOB_ROLE
from ..infrastructure.llm import VertexRestClient
from .models import Question
from .prompts import InterviewPrompts

logger = logging.getLogger("questions")


class GeminiQuestionGenerator:
    """Asks Gemini for the next interviewer line given the conversation so far."""

    def __init__(self, llm_client: VertexRestClient, job_role: str = JOB_ROLE, company: str = COMPANY):
        self.llm_client = llm_client
        self.job_role = job_role
        self.company = company

    def get_next_question(self, history: List[Dict[str, str]],
                          interview_type: str, difficulty: str) -> Dict[str, str]:
        """
        Returns:
            ``{"question": text}``

        Raises:
            RuntimeError, EmptyResponseError or requests exceptions on failure.
            The conversation engine turns any of these into a fallback question.
        """
        system = InterviewPrompts.system_prompt(self.company, interview_type, self.job_role)
        if difficulty:
            system += f"\n- Pitch questions at {difficulty} difficulty"
        prompt = InterviewPrompts.conversation_prompt(system, history)
        logger.debug("Question prompt (%d turns of history)", len(history))

        text = self.llm_client.generate_content(prompt)
        logger.info("Generated question: %s", text.strip())
        return {"question": text}


class FallbackQuestions:
    """Canned questions keyed by interview type, used when generation fails."""

    def __init__(self, rng: Optional[random.Random] = None,
                 table: Optional[Dict[str, List[str]]] = None):
        self.rng = rng or random.Random()
        self.table = table or InterviewPrompts.fallback_questions()

    def pick(self, interview_type: str, opening: bool = False) -> Question:
        if opening:
            return Question(InterviewPrompts.opening_greeting(interview_type), source="fallback")
        options = self.table.get(interview_type) or self.table["behavioral"]
        question = self.rng.choice(options)
        logger.info("Using fallback question for %s interview: %s", interview_type, question)
        return Question(question, source="fallback")
