"""
Interview prompt templates and canned interviewer lines.

This module keeps every piece of interviewer wording in one place, separate
from the turn-taking logic, so it can be edited without touching the engine.
"""

from typing import Dict, List


OPENING_TOPICS = {
    "behavioral": "situation you faced at work",
    "technical": "technical problem you solved",
    "system-design": "system you designed",
}

APOLOGY_EMPTY_TRANSCRIPT = (
    "I had trouble processing your audio response. Please try speaking again "
    "or click \"End Interview\" if you're finished."
)

APOLOGY_TRANSCRIPTION_FAILED = (
    "I had trouble processing your audio. Please try recording your response again, "
    "or click \"End Interview\" if you're ready to finish."
)

PLACEHOLDER_ANSWER = "[No response detected]"

CLOSING_LINE = (
    "Thank you, that brings us to the end of the interview. "
    "Your responses are being analyzed now."
)


class InterviewPrompts:
    """Collection of all interviewer prompts."""

    @staticmethod
    def system_prompt(company: str, interview_type: str, job_role: str) -> str:
        """Instructions for the AI interviewer."""
        guidelines = ""
        if interview_type == "behavioral":
            guidelines = (
                "- Focus on past experiences, leadership, teamwork, conflict resolution\n"
                "- Use brief \"Tell me about...\" questions\n"
                "- Keep questions under 15 words when possible"
            )
        return f"""
You are an experienced {company} interviewer conducting a {interview_type} interview for a {job_role} position.

Your role:
- Ask CONCISE, direct questions (1-2 sentences maximum)
- Be brief and to the point - avoid lengthy explanations
- Focus on clear, specific questions that get straight to the point
- Maintain a professional tone
- Ask one question at a time
- Build upon previous responses naturally

Interview Type Guidelines:
{guidelines}
        """.strip()

    @staticmethod
    def conversation_prompt(system_prompt: str, history: List[Dict[str, str]]) -> str:
        """Flatten the system prompt and history into a single transcript prompt."""
        lines = [f"System: {system_prompt}"]
        for message in history:
            role = message.get("role")
            content = message.get("content", "")
            if role == "system":
                lines.append(f"System: {content}")
            elif role == "user":
                lines.append(f"Candidate: {content}")
            else:
                lines.append(f"Interviewer: {content}")
        return "\n\n".join(lines)

    @staticmethod
    def opening_greeting(interview_type: str) -> str:
        """Greeting used when the first question cannot be generated."""
        topic = OPENING_TOPICS.get(interview_type, "project you worked on")
        return (
            f"Hello! I'm your AI interviewer today. Let's start with a {interview_type} question. "
            f"Tell me about a challenging {topic} and how you handled it."
        )

    @staticmethod
    def fallback_questions() -> Dict[str, List[str]]:
        """Canned questions for when the question generator fails."""
        return {
            "behavioral": [
                "Describe a challenge you overcame at work.",
                "How did you handle a difficult team member?",
                "Share a decision you made with limited information.",
                "What's a failure you learned from?",
                "Tell me about a time you led a project.",
                "Describe a situation where you had to meet a tight deadline.",
                "How have you handled disagreements with your manager?",
                "Tell me about a time you went above and beyond.",
                "How do you handle stress or pressure?",
                "Describe a time you had to adapt to a significant change.",
                "Tell me about a time you received difficult feedback.",
                "How have you resolved conflicts in your team?",
                "Describe a situation where you influenced others without authority.",
                "Tell me about a time you had to make an unpopular decision.",
            ],
            "technical": [
                "How do you debug complex issues?",
                "How do you stay updated with new technologies?",
                "What technical project are you most proud of?",
                "How do you ensure code maintainability?",
            ],
            "system-design": [
                "How would you design a URL shortening service like bit.ly?",
                "Can you walk me through how you would design a distributed cache?",
                "How would you design a notification system that can handle millions of users?",
                "What considerations would you make when designing a real-time chat application?",
            ],
            "product": [
                "How do you prioritize product features?",
                "Describe a product trade-off you had to make.",
                "How do you measure feature success?",
                "How do you understand user needs?",
            ],
        }
