"""Prompt builders for quiz generation and batch planning."""

from __future__ import annotations

from collections.abc import Sequence

from app.jobs.models import EDUCATION_LEVELS, GenerationConfig
from app.services.rules_client import QuizRules

MAX_CONTEXT_CHARS = 8000
MAX_CROSSWORD_ENTRIES = 10
PLANNING_INSTRUCTIONS_CHARS = 4000
PLANNING_SLICE_CHARS = 1200
PLANNING_MAX_SLICES = 10
PLANNING_CONTEXT_CHARS = 16000


def target_audience(education_level: str) -> str:
  return EDUCATION_LEVELS.get(education_level, "primary school students")


def expected_question_count(quiz_type: str, requested: int) -> int:
  """Crossword is capped at ten entries by the quiz store."""
  normalized = max(1, int(requested or 10))
  if quiz_type == "crossword":
    return min(normalized, MAX_CROSSWORD_ENTRIES)
  return normalized


def format_type_plan(type_plan: Sequence[str]) -> str:
  return ", ".join(f"{index + 1}:{quiz_type}" for index, quiz_type in enumerate(type_plan))


def build_system_prompt(config: GenerationConfig, *, quiz_type: str, item_number: int, rules: QuizRules) -> str:
  """Extend the canonical per-type system prompt with runtime constraints."""
  base_prompt = rules.system_prompt(quiz_type)
  expected = expected_question_count(quiz_type, config.questions_per_quiz)

  parts = [base_prompt, f"Target audience: {target_audience(config.education_level)}."]
  if config.item_count > 1:
    parts.append(
      f"IMPORTANT: You are generating quiz {item_number} of {config.item_count}. Each quiz in this batch must be unique and diverse. "
      "Use different question styles, perspectives, and aspects of the content to ensure variety across all quizzes."
    )
  parts.append(f"You MUST return exactly {expected} questions/entries (array length must match exactly).")
  parts.append(f'Subject is fixed to "{config.subject.strip()}" and must not be changed.')
  parts.append('Generate a concise content-based "topic" label for each quiz and include it in the output. Prefer 1-2 words and keep to at most 4 words unless a longer phrase is essential.')
  parts.append('Do not include batch numbers/progress markers in "name" or "topic" (e.g. "Quiz 2", "(2/5)", "#3", "4/5").')
  return " ".join(parts)


def build_user_prompt(content: str, config: GenerationConfig, *, quiz_type: str, item_number: int, rules: QuizRules) -> str:
  """Build the per-quiz user prompt, ending with the schema format instructions."""
  format_instructions = rules.format_instructions(quiz_type)
  expected = expected_question_count(quiz_type, config.questions_per_quiz)
  audience = target_audience(config.education_level)
  subject = config.subject.strip()

  lines = [
    f"Generate a {quiz_type} quiz with exactly {expected} questions appropriate for {audience}.",
    "",
    f"IMPORTANT: Questions must be age-appropriate in vocabulary, complexity, and concepts for {audience}.",
    "",
    f"STRICT REQUIREMENT: Return exactly {expected} entries in the quiz items list. Do not return more or fewer.",
    "",
    "COUNT VALIDATION (MANDATORY BEFORE YOU RESPOND):",
    f"- If your output structure uses 'items', the 'items' array length MUST be exactly {expected}.",
    f"- If your output structure uses 'entries', the 'entries' array length MUST be exactly {expected}.",
    "- Perform a final self-check and fix the count before returning.",
    "- Return only the final corrected JSON object.",
    "",
  ]
  if quiz_type == "crossword" and config.questions_per_quiz > MAX_CROSSWORD_ENTRIES:
    lines += [f"NOTE: Crossword quizzes support a maximum of {MAX_CROSSWORD_ENTRIES} entries. Use exactly {MAX_CROSSWORD_ENTRIES} entries.", ""]

  if config.item_count > 1:
    lines += [
      "===== BATCH CONTEXT =====",
      f"This is Quiz #{item_number} of {config.item_count} quizzes being generated.",
      "Each quiz must be UNIQUE and DIVERSE. Apply these variety strategies:",
      "- Use different question formulations and linguistic styles",
      "- Focus on different aspects or subtopics within the content",
      "- Vary the difficulty distribution and question types",
      "- Approach the material from different angles or perspectives",
      "",
      'IMPORTANT OUTPUT RULE: Do NOT include batch numbering, index markers, or progress markers in "name" or "topic" (e.g., "Quiz 2", "#3", "(2/5)", "Quiz 4").',
      "",
    ]

  lines += [
    "Instructions/Content:",
    content[:MAX_CONTEXT_CHARS],
    "",
    "===== QUIZ TITLE =====",
    "Generate a creative, descriptive title for the 'name' field.",
    "Title rules: plain human-readable title, no numbering/progress markers, no parenthesized batch labels.",
    "METADATA COMPLIANCE RULES:",
    '- "name" must not contain quiz numbering markers (forbidden examples: "Quiz 2", "#3", "(2/5)", "4/5").',
    '- "topic" must be concise and content-based (prefer 1-2 words, maximum 4 words unless absolutely necessary).',
    '- "topic" must not contain numbering/progress markers.',
    "- If any rule is violated, rewrite before returning the final JSON.",
    f'The subject is fixed to "{subject}". Keep the subject value exactly as "{subject}".',
    'Generate a specific topic label based on quiz content and set it in the "topic" field.',
    f'Example titles: "{subject} Fundamentals", "{subject} Challenge", "{subject} Practice"',
    "Context relevance rule: uploaded documents may include unrelated content. Use only evidence relevant to the teacher instructions, subject, level, and blueprint focus.",
  ]

  if quiz_type == "true-false":
    lines += [
      "",
      "===== TRUE/FALSE QUALITY RULES =====",
      "- Every item MUST include a non-empty question/statement text.",
      "- Every item MUST include explicit boolean correctness for True/False (never omit correctness).",
      "- Ensure the answer key is not one-sided: include a balanced mix of True and False correct answers.",
      "- Keep statements clear, specific, and fact-checkable.",
    ]
  if quiz_type == "basic":
    lines += [
      "",
      "===== OPEN-ENDED ANSWER TYPE RULES =====",
      '- Allowed open answerType values are ONLY: "exact", "keywords", and "list".',
      '- For answerType "exact", provide one or more accepted answers in "text".',
      '- For answerType "keywords", "keywords" must be an array of plain strings and minKeywords must be 1 or higher.',
      '- For answerType "list", "listItems" must be an array of plain strings and minCorrectItems must be 1 or higher.',
    ]

  lines += ["", format_instructions]
  return "\n".join(lines)


def build_planning_context(instructions: str, contexts: Sequence[str]) -> str:
  """Condense instructions and the first context slices for the planning call."""
  parts = [f"Teacher instructions (full or truncated):\n{instructions[:PLANNING_INSTRUCTIONS_CHARS]}"]
  for index, context in enumerate(contexts[:PLANNING_MAX_SLICES]):
    if context:
      parts.append(f"Context slice {index + 1}:\n{context[:PLANNING_SLICE_CHARS]}")
  return "\n\n".join(parts)[:PLANNING_CONTEXT_CHARS]


def build_planning_system_prompt(config: GenerationConfig, type_plan: Sequence[str]) -> str:
  return " ".join(
    [
      "You are an expert educational assessment planner for quiz generation.",
      f"Plan {config.item_count} distinct quizzes for {target_audience(config.education_level)}.",
      f'Subject is fixed to "{config.subject}" and cannot be changed.',
      "Return ONLY valid JSON (no markdown).",
      "The plan must reduce duplication across quizzes and maximize topical/skill coverage.",
      "Source documents may contain irrelevant or off-topic sections; prioritize relevance to teacher instructions, subject, and level.",
      f"Quiz type assignments are pre-locked: {format_type_plan(type_plan)}.",
    ]
  )


def build_planning_user_prompt(planning_context: str, config: GenerationConfig, type_plan: Sequence[str]) -> str:
  return "\n".join(
    [
      f"Create a generation blueprint for {config.item_count} quizzes.",
      "Return JSON with this exact top-level shape:",
      '{"quizzes":[{"quizNumber":1,"quizType":"basic","focus":"...","angle":"...","mustCover":["..."],"avoidOverlap":["..."],"titleHint":"...","topicHint":"..."}]}',
      "Rules:",
      f"- quizzes array length must be exactly {config.item_count}.",
      "- quizNumber must be sequential from 1..N.",
      "- quizType for each quiz must exactly match the pre-locked assignment.",
      "- if context conflicts with teacher instructions, prioritize teacher instructions and subject/level constraints.",
      "- focus should be concise (3-8 words), concrete, and unique across quizzes.",
      "- angle should describe the pedagogical approach/style (short phrase).",
      "- mustCover should list 1-3 concepts/skills to prioritize.",
      "- avoidOverlap should list 1-3 things to avoid repeating from other quizzes.",
      "- titleHint/topicHint should be concise and not include numbering/progress markers.",
      f'- respect subject "{config.subject}", education level "{config.education_level}", and requested count {config.questions_per_quiz} questions per quiz.',
      f"Pre-locked quiz type assignments: {format_type_plan(type_plan)}.",
      "",
      "Planning context:",
      planning_context,
    ]
  )
