"""
Static per-subject configuration: tutor persona, model choice and whether
web grounding is enabled, plus the icon and colour the shell displays.
"""
from pydantic import BaseModel

from config import FAST_MODEL_NAME, REASONING_MODEL_NAME
from data_models import Subject


class SubjectProfile(BaseModel):
    model_config = {"frozen": True}

    system_instruction: str
    model_name: str
    grounding: bool
    icon: str
    color: str


SUBJECT_PROFILES: dict[Subject, SubjectProfile] = {
    Subject.GENERAL: SubjectProfile(
        system_instruction="You are Lumina, a helpful and encouraging AI learning assistant. Help the student with their questions clearly and concisely.",
        model_name=FAST_MODEL_NAME,
        grounding=True,
        icon="fa-robot",
        color="#6366f1",
    ),
    Subject.MATH: SubjectProfile(
        system_instruction=(
            "You are an expert Mathematics tutor. Guide the student step-by-step through problems. "
            "Do not just give the final answer; explain the logic. Use standard text formatting for equations where possible. "
            "If the problem is complex, use deep reasoning."
        ),
        model_name=REASONING_MODEL_NAME,
        grounding=False,
        icon="fa-calculator",
        color="#2563eb",
    ),
    Subject.SCIENCE: SubjectProfile(
        system_instruction="You are a Science tutor. Explain concepts using real-world analogies. If asked about diagrams, describe them vividly.",
        model_name=FAST_MODEL_NAME,
        grounding=True,
        icon="fa-flask",
        color="#10b981",
    ),
    Subject.HISTORY: SubjectProfile(
        system_instruction=(
            "You are a History expert. Provide context, dates, and connections between events. "
            "Use Google Search grounding to ensure facts about recent history are accurate."
        ),
        model_name=FAST_MODEL_NAME,
        grounding=True,
        icon="fa-landmark",
        color="#d97706",
    ),
    Subject.LITERATURE: SubjectProfile(
        system_instruction=(
            "You are a Literature and Writing coach. Help with essay structure, grammar, and literary analysis. "
            "Do not write the essay for the student, but guide them to improve their own writing."
        ),
        model_name=REASONING_MODEL_NAME,
        grounding=False,
        icon="fa-book-open",
        color="#f43f5e",
    ),
}


def profile_for(subject: Subject) -> SubjectProfile:
    return SUBJECT_PROFILES[subject]


def mode_label(subject: Subject) -> str:
    return "Pro Reasoning Mode" if subject is Subject.MATH else "Standard Mode"
