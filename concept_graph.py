"""
Decides when a finished turn should produce a concept graph, and what topic to ask for.
"""
from config import CONCEPT_GRAPH_MIN_CHARS, CONCEPT_GRAPH_TOPIC_CHARS
from data_models import Subject

GRAPH_SUBJECTS = frozenset({Subject.SCIENCE, Subject.HISTORY})


def should_generate_concept_graph(subject: Subject, response_length: int) -> bool:
    return subject in GRAPH_SUBJECTS and response_length > CONCEPT_GRAPH_MIN_CHARS


def topic_for(user_text: str) -> str:
    # The topic comes from the learner's question, not from the tutor's answer.
    return user_text[:CONCEPT_GRAPH_TOPIC_CHARS]


def concept_map_prompt(topic: str) -> str:
    return (
        f'Generate a concept map for the topic: "{topic}". \n'
        'Return strictly JSON with two arrays: "nodes" (id, group 1-3 based on importance, val 5-20) '
        'and "links" (source id, target id, value 1-5). \n'
        "Create about 10-15 nodes effectively linking related sub-concepts."
    )
