"""Tests for question generation, prompts and fallbacks."""
import random
from unittest.mock import Mock

from wingman.interview.prompts import InterviewPrompts
from wingman.interview.questions import FallbackQuestions, GeminiQuestionGenerator


class TestPrompts:
    def test_conversation_prompt_labels_roles(self):
        prompt = InterviewPrompts.conversation_prompt("Be brief.", [
            {"role": "assistant", "content": "Tell me about a project."},
            {"role": "user", "content": "I built a cache."},
        ])
        assert prompt.split("\n\n") == [
            "System: Be brief.",
            "Interviewer: Tell me about a project.",
            "Candidate: I built a cache.",
        ]

    def test_system_prompt_mentions_role_and_company(self):
        prompt = InterviewPrompts.system_prompt("Acme", "technical", "Data Engineer")
        assert "Acme" in prompt
        assert "Data Engineer" in prompt

    def test_every_type_has_fallbacks(self):
        table = InterviewPrompts.fallback_questions()
        assert set(table) == {"behavioral", "technical", "system-design", "product"}
        assert all(table.values())


class TestGeminiQuestionGenerator:
    def test_returns_question_mapping(self):
        llm = Mock()
        llm.generate_content.return_value = "What went wrong?\n"
        generator = GeminiQuestionGenerator(llm, job_role="SRE", company="Acme")
        reply = generator.get_next_question([{"role": "user", "content": "We had an outage."}],
                                            "behavioral", "hard")
        assert reply == {"question": "What went wrong?\n"}
        prompt = llm.generate_content.call_args.args[0]
        assert "hard difficulty" in prompt
        assert prompt.endswith("Candidate: We had an outage.")


class TestFallbackQuestions:
    def test_opening_is_greeting(self):
        question = FallbackQuestions().pick("technical", opening=True)
        assert question.text == InterviewPrompts.opening_greeting("technical")
        assert question.source == "fallback"

    def test_unknown_type_uses_behavioral(self):
        question = FallbackQuestions(rng=random.Random(3)).pick("unknown")
        assert question.text in InterviewPrompts.fallback_questions()["behavioral"]

    def test_custom_table(self):
        question = FallbackQuestions(table={"behavioral": ["Only one?"]}).pick("behavioral")
        assert question.text == "Only one?"
