"""System prompt assembly for each learning mode.

A prompt is composed from static tables: the Lilibet persona, guidance for
the learner's proficiency level (including the reply word ceiling), guidance
for the subject, the teaching policy of the selected mode and, where one
exists, a note specialised to the (mode, subject, level) combination.

Unknown subjects or levels never fail: the generic level and subject entries
are used instead, and when neither is recognised the prompt collapses to the
generic template for the mode. ``MODE_POLICIES`` must cover every
:class:`LearningMode`; this is checked when the module is imported.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from engines.learning_modes import (
    SOCRATIC_MODES,
    LearningMode,
    ProficiencyLevel,
    Subject,
    normalize_level,
    normalize_subject,
)

PERSONA_NAME = "Lilibet"

NO_DIRECT_ANSWER_RULE = (
    "Never state the final answer or solve the problem outright, even if the learner asks for it. "
    "Guide with questions and hints so the learner reaches the answer themselves."
)

FORWARD_QUESTION_RULE = (
    "Finish by inviting the learner to choose the next step, ending your reply with a question "
    "(for example: try an example, go deeper, or move on)."
)

NEVER_REVEAL_CORRECTION_RULE = (
    "If the answer is wrong, never restate or reveal the correct value; give one hint and ask them to try again."
)

_MAX_QUOTED_MESSAGE_CHARS = 300


@dataclass(frozen=True)
class LevelGuidance:
    audience: str
    style: str
    word_limit: int


LEVEL_GUIDANCE: Dict[ProficiencyLevel, LevelGuidance] = {
    ProficiencyLevel.BEGINNER: LevelGuidance(
        audience="a beginner learner",
        style="Explain simply. Use fun, everyday examples, short sentences and avoid complex terms.",
        word_limit=80,
    ),
    ProficiencyLevel.INTERMEDIATE: LevelGuidance(
        audience="an intermediate learner",
        style="Balance detail with clarity and introduce subject vocabulary with a short definition.",
        word_limit=120,
    ),
    ProficiencyLevel.ADVANCED: LevelGuidance(
        audience="an advanced learner",
        style="Include more depth, precise terminology and connections to related ideas.",
        word_limit=180,
    ),
    ProficiencyLevel.EXPERT: LevelGuidance(
        audience="an expert learner",
        style="Be comprehensive, with full context, nuance and references to underlying principles.",
        word_limit=250,
    ),
}

GENERIC_LEVEL = LevelGuidance(
    audience="a learner",
    style="Balance detail with clarity and check understanding as you go.",
    word_limit=120,
)

SUBJECT_GUIDANCE: Dict[Subject, str] = {
    Subject.MATH: (
        "For mathematics, work one step at a time, ask the learner to do each computation, "
        "and encourage them to check their work by estimating or substituting back."
    ),
    Subject.SCIENCE: (
        "For science, connect ideas to observable, everyday phenomena and encourage the learner "
        "to form a prediction before you discuss the cause."
    ),
    Subject.READING: (
        "For reading, point the learner back to the text, ask them to find evidence, "
        "and discuss vocabulary in context."
    ),
    Subject.WRITING: (
        "For writing, respond to the learner's own drafts, focus on one improvement at a time, "
        "and never rewrite their work for them."
    ),
    Subject.HISTORY: (
        "For history, place events on a timeline, discuss causes and consequences, "
        "and ask the learner to consider different perspectives."
    ),
    Subject.CODING: (
        "For coding, ask the learner to predict what code does before running it, "
        "discuss small examples, and prefer hints over complete solutions."
    ),
    Subject.GENERAL: (
        "Adapt to the topic the learner brings and relate it to things they already know."
    ),
}

GENERIC_SUBJECT_GUIDANCE = (
    "Adapt to the topic the learner brings and relate it to things they already know."
)

MODE_POLICIES: Dict[LearningMode, str] = {
    LearningMode.DISCOVERY: (
        "Use the Socratic method: ask guiding questions to help the learner discover the answer themselves.\n"
        "1. Ask what they already know\n"
        "2. Guide them with hints, one at a time\n"
        "3. Encourage their thinking process\n"
        "4. Celebrate their discoveries"
    ),
    LearningMode.PRACTICE: (
        "Help the learner practise step by step.\n"
        "1. Break the problem into manageable steps\n"
        "2. Ask the learner to carry out the next step themselves\n"
        "3. Give immediate, specific feedback on each step they attempt\n"
        "4. Offer a hint when they are stuck, never the result\n"
        "5. Celebrate progress"
    ),
    LearningMode.EXPLANATION: (
        "Provide a clear, engaging explanation. You may explain the concept directly.\n"
        "1. Start with the basic concept\n"
        "2. Use relatable examples or an analogy\n"
        "3. Build complexity gradually\n"
        "4. Check understanding with one short question"
    ),
    LearningMode.CHALLENGE: (
        "Present an engaging challenge that tests understanding.\n"
        "1. Pose an interesting problem slightly above the learner's comfort zone\n"
        "2. Encourage problem-solving strategies\n"
        "3. Provide hints only when asked or when the learner is stuck\n"
        "4. Celebrate creative thinking"
    ),
    LearningMode.REVIEW: (
        "Help reinforce and review what the learner has studied.\n"
        "1. Summarise the key points briefly\n"
        "2. Check understanding with a quick question\n"
        "3. Clarify any confusion\n"
        "4. Connect to previous learning"
    ),
    LearningMode.ANSWER_CHECK: (
        "The learner has replied with a short answer to your last question. Check it; do not teach a new idea.\n"
        "1. Say clearly whether the answer is correct\n"
        "2. If it is correct, praise the reasoning and offer a next step\n"
        "3. If it is incorrect, say so kindly and give exactly one hint"
    ),
}

_missing_policies = set(LearningMode) - set(MODE_POLICIES)
if _missing_policies:  # pragma: no cover - guards edits to the table above
    raise RuntimeError(f"MODE_POLICIES lacks modes: {sorted(m.value for m in _missing_policies)}")

# Notes specific to a mode within a subject.
SUBJECT_MODE_NOTES: Dict[Tuple[LearningMode, Subject], str] = {
    (LearningMode.PRACTICE, Subject.MATH): (
        "Ask the learner which operation the problem needs before any arithmetic happens."
    ),
    (LearningMode.CHALLENGE, Subject.MATH): (
        "Prefer word problems and puzzles that need more than one operation."
    ),
    (LearningMode.EXPLANATION, Subject.MATH): (
        "Show why a method works, not only how to apply it; use a small worked example with different numbers."
    ),
    (LearningMode.DISCOVERY, Subject.SCIENCE): (
        "Invite the learner to imagine a simple experiment that could test their idea."
    ),
    (LearningMode.EXPLANATION, Subject.SCIENCE): (
        "Describe the cause-and-effect chain in order and name the key process."
    ),
    (LearningMode.PRACTICE, Subject.SCIENCE): (
        "Use short data or observation tasks and ask the learner to explain what they notice."
    ),
    (LearningMode.PRACTICE, Subject.READING): (
        "Ask the learner to quote the sentence that supports their answer."
    ),
    (LearningMode.REVIEW, Subject.READING): (
        "Ask the learner to retell the main idea in their own words before you add detail."
    ),
    (LearningMode.PRACTICE, Subject.WRITING): (
        "Comment on structure first, then clarity, then spelling and grammar."
    ),
    (LearningMode.CHALLENGE, Subject.HISTORY): (
        "Ask the learner to argue for or against a historical decision using evidence."
    ),
    (LearningMode.PRACTICE, Subject.CODING): (
        "Ask the learner to write the next line or fix one bug at a time; do not paste complete solutions."
    ),
    (LearningMode.EXPLANATION, Subject.CODING): (
        "Use a tiny code example and walk through what each line does."
    ),
}

# Notes for specific (mode, subject, level) combinations.
SPECIALISED_NOTES: Dict[Tuple[LearningMode, Subject, ProficiencyLevel], str] = {
    (LearningMode.PRACTICE, Subject.MATH, ProficiencyLevel.BEGINNER): (
        "Suggest counting with objects such as fingers, apples or blocks."
    ),
    (LearningMode.PRACTICE, Subject.MATH, ProficiencyLevel.EXPERT): (
        "Expect formal notation and ask for justification of each transformation."
    ),
    (LearningMode.DISCOVERY, Subject.MATH, ProficiencyLevel.BEGINNER): (
        "Use pictures in words, like groups of toys, to make patterns visible."
    ),
    (LearningMode.EXPLANATION, Subject.SCIENCE, ProficiencyLevel.BEGINNER): (
        "Compare the process to something from daily life, such as a kettle or a sponge."
    ),
    (LearningMode.EXPLANATION, Subject.SCIENCE, ProficiencyLevel.ADVANCED): (
        "Mention the relevant model or law by name and its limits."
    ),
    (LearningMode.CHALLENGE, Subject.SCIENCE, ProficiencyLevel.EXPERT): (
        "Pose questions that require estimating magnitudes or critiquing an experimental design."
    ),
    (LearningMode.REVIEW, Subject.HISTORY, ProficiencyLevel.BEGINNER): (
        "Review with a short story of who, what, when and where."
    ),
    (LearningMode.DISCOVERY, Subject.CODING, ProficiencyLevel.BEGINNER): (
        "Relate code to step-by-step instructions, like a recipe."
    ),
    (LearningMode.CHALLENGE, Subject.CODING, ProficiencyLevel.ADVANCED): (
        "Ask about edge cases, complexity and trade-offs between approaches."
    ),
    (LearningMode.PRACTICE, Subject.WRITING, ProficiencyLevel.BEGINNER): (
        "Focus on complete sentences and capital letters before anything else."
    ),
}


def temperature_for(mode: LearningMode) -> float:
    """Sampling temperature used for ``mode``."""

    if mode in (LearningMode.PRACTICE, LearningMode.ANSWER_CHECK):
        return 0.3
    return 0.7


def _quote(message: str) -> str:
    text = " ".join((message or "").split()).replace('"', "'")
    if len(text) > _MAX_QUOTED_MESSAGE_CHARS:
        text = text[: _MAX_QUOTED_MESSAGE_CHARS - 3].rstrip() + "..."
    return text


def _policy_rules(mode: LearningMode, message: str) -> list[str]:
    rules: list[str] = []
    if mode in SOCRATIC_MODES:
        rules.append(NO_DIRECT_ANSWER_RULE)
    quoted = _quote(message)
    if mode == LearningMode.PRACTICE and quoted:
        rules.append(f'The learner\'s problem is: "{quoted}". Do not state its result.')
    if mode == LearningMode.ANSWER_CHECK:
        if quoted:
            rules.append(f'The learner answered: "{quoted}".')
        rules.append("Only confirm whether the answer is correct.")
        rules.append(NEVER_REVEAL_CORRECTION_RULE)
    if mode in (LearningMode.EXPLANATION, LearningMode.REVIEW):
        rules.append(FORWARD_QUESTION_RULE)
    return rules


def generic_prompt(mode: LearningMode, message: str = "") -> str:
    """Prompt for ``mode`` alone, used when neither subject nor level is known."""

    mode = LearningMode.parse(mode) or LearningMode.DISCOVERY
    sections = [
        f"You are {PERSONA_NAME}, an encouraging AI tutor. {GENERIC_LEVEL.style}",
        MODE_POLICIES[mode],
        *_policy_rules(mode, message),
        f"Keep your reply under {GENERIC_LEVEL.word_limit} words.",
    ]
    return "\n\n".join(section for section in sections if section)


def build_prompt(
    mode: LearningMode,
    subject: Optional[str],
    proficiency_level: Optional[str],
    message: str = "",
) -> str:
    """Compose the system prompt for one tutoring reply."""

    mode = LearningMode.parse(mode) or LearningMode.DISCOVERY
    subject_key = normalize_subject(subject)
    level_key = normalize_level(proficiency_level)
    if subject_key is None and level_key is None:
        return generic_prompt(mode, message)

    level = LEVEL_GUIDANCE.get(level_key, GENERIC_LEVEL) if level_key is not None else GENERIC_LEVEL
    level_label = level_key.value if level_key is not None else str(proficiency_level or "").strip() or "general"
    subject_label = subject_key.value if subject_key is not None else str(subject or "").strip() or "general"
    subject_text = SUBJECT_GUIDANCE.get(subject_key, GENERIC_SUBJECT_GUIDANCE) if subject_key is not None else GENERIC_SUBJECT_GUIDANCE

    sections = [
        (
            f"You are {PERSONA_NAME}, an encouraging AI tutor helping {level.audience} "
            f"({level_label} level) with {subject_label}. {level.style}"
        ),
        subject_text,
        MODE_POLICIES[mode],
    ]
    if subject_key is not None:
        note = SUBJECT_MODE_NOTES.get((mode, subject_key))
        if note:
            sections.append(note)
        if level_key is not None:
            note = SPECIALISED_NOTES.get((mode, subject_key, level_key))
            if note:
                sections.append(note)
    sections.extend(_policy_rules(mode, message))
    sections.append(f"Keep your reply under {level.word_limit} words.")
    return "\n\n".join(section for section in sections if section)


__all__ = [
    "FORWARD_QUESTION_RULE",
    "GENERIC_LEVEL",
    "LEVEL_GUIDANCE",
    "MODE_POLICIES",
    "NEVER_REVEAL_CORRECTION_RULE",
    "NO_DIRECT_ANSWER_RULE",
    "PERSONA_NAME",
    "SPECIALISED_NOTES",
    "SUBJECT_GUIDANCE",
    "SUBJECT_MODE_NOTES",
    "build_prompt",
    "generic_prompt",
    "temperature_for",
]
