from __future__ import annotations

import random

from vocab_mastery.services.llm import ExerciseDraft


def fallback_exercises(term: str, definition: str, example: str) -> list[ExerciseDraft]:
    """Two deterministic multiple-choice exercises built from content already known."""
    term = term.strip()
    definition = definition.strip() or f"Meaning of {term}"
    example = example.strip() or f"Many writers consider the word '{term}' useful in academic essays."

    meaning_distractors = ["Something else", "Another option", "Different meaning"]
    context_distractors = [
        f"The {term} is very important.",
        f"I need to {term} today.",
        f"This is a {term} situation.",
    ]
    return [
        ExerciseDraft(
            exercise_type="mcq_meaning",
            question=f"What does '{term}' mean?",
            correct_answer=definition,
            options=_options(definition, meaning_distractors, seed=f"mcq_meaning-{term}"),
            explanation="This is the correct definition.",
        ),
        ExerciseDraft(
            exercise_type="mcq_context",
            question=f"Choose the sentence where '{term}' is used correctly:",
            correct_answer=example,
            options=_options(example, context_distractors, seed=f"mcq_context-{term}"),
            explanation="This sentence uses the word correctly in context.",
        ),
    ]


def _options(correct: str, distractors: list[str], *, seed: str) -> list[str]:
    # Keep exactly one option equal to the answer even if a distractor collides with it.
    options = [correct]
    for idx, distractor in enumerate(distractors):
        options.append(distractor if distractor != correct else f"{distractor} ({idx + 1})")
    random.Random(seed).shuffle(options)
    return options
