"""
Prompts for mock exam generation.

Contains:
- System prompts per exam type (generic, quantitative, verbal, data interpretation)
- JSON format blocks per document schema
- Follow-up instructions sent when a response was truncated or unparseable

The exam type is detected from keywords in the user's prompt unless given
explicitly on the command line.
"""
from __future__ import annotations

from mockforge.generation.schema import EXAM_SCHEMA, QUESTION_SET_SCHEMA, DocumentSchema

# =============================================================================
# Shared Rules (Applied to All Exam Types)
# =============================================================================

BASE_RULES = """Follow these rules with absolute precision:

1. ANALYZE REFERENCE MATERIALS
   - Study the "REFERENCE PYQ" documents for question style, topics, difficulty and phrasing.
   - Study the "REFERENCE MOCK TEST" documents for structure and the tone of instructions.

2. GENERATE ORIGINAL CONTENT
   - NEVER copy questions or passages from the reference materials.
   - Every question, option and solution must be new.

3. OUTPUT
   - Output ONLY valid JSON, no text before or after it, no Markdown fences.
   - Follow the JSON structure below exactly.
   - Number questions sequentially across the whole test, starting at 1.
   - Include "tableData" or "chartData" only for question sets built on a table or chart;
     omit them otherwise. Chart values must be plain numbers.
"""

# =============================================================================
# System Prompts per Exam Type
# =============================================================================

EXAM_TYPE_PROMPTS = {
    "generic": (
        "You are an expert exam designer creating a BRAND NEW, high-quality mock test "
        "for a competitive entrance exam, matching the exam described in the user's "
        "instructions.\n\n" + BASE_RULES
    ),
    "quantitative": (
        "You are an expert exam designer specializing in QUANTITATIVE APTITUDE. Create a "
        "BRAND NEW mock test covering arithmetic, algebra, geometry and number systems, with "
        "step-by-step solutions that show every calculation.\n\n" + BASE_RULES
    ),
    "verbal": (
        "You are an expert exam designer specializing in VERBAL ABILITY. Create a BRAND NEW "
        "mock test with reading comprehension passages, grammar, vocabulary and para-jumble "
        "questions. Put each passage in the directions of its question set.\n\n" + BASE_RULES
    ),
    "data-interpretation": (
        "You are an expert exam designer specializing in DATA INTERPRETATION. Create a BRAND "
        "NEW mock test where every question set is built around one realistic dataset "
        "(table, bar chart, line graph or pie chart) with 3-5 questions testing value lookup, "
        "percentages, ratios, trends and comparisons. Keep all data mathematically "
        "consistent.\n\n" + BASE_RULES
    ),
}

EXAM_TYPE_KEYWORDS = {
    "data-interpretation": ("data interpretation", "charts", "graphs", "tables"),
    "quantitative": ("quantitative", "mathematics", "arithmetic"),
    "verbal": ("verbal", "english", "reading comprehension"),
}

# =============================================================================
# JSON Format Blocks per Schema
# =============================================================================

EXAM_FORMAT = """JSON STRUCTURE:
{
  "examTitle": "string",
  "examDetails": {"totalQuestions": number, "timeAllotted": "string", "maxMarks": number},
  "instructions": {"title": "string", "points": ["string"]},
  "sections": [
    {
      "sectionTitle": "string",
      "questionSets": [
        {
          "type": "standalone | group",
          "directions": {"title": "string", "text": "string"},
          "tableData": {"title": "string", "headers": ["string"], "rows": [["string"]]},
          "chartData": {
            "chartType": "column | bar | line | area | pie | doughnut",
            "title": "string",
            "data": [{"name": "string", "labels": ["string"], "values": [number]}]
          },
          "questions": [
            {
              "questionNumber": number,
              "questionText": "string",
              "options": [{"label": "A", "text": "string"}],
              "solution": {"answer": "string", "steps": ["string"]}
            }
          ]
        }
      ]
    }
  ]
}"""

QUESTION_SET_FORMAT = """JSON STRUCTURE:
{
  "title": "string",
  "totalQuestions": number,
  "timeMinutes": number,
  "maxMarks": number,
  "instructions": ["string"],
  "questionSets": [
    {
      "setNumber": number,
      "setTitle": "string",
      "directions": "string",
      "dataType": "table | chart",
      "dataTitle": "string",
      "tableHeaders": ["string"],
      "tableRows": [["string"]],
      "chartData": {
        "chartType": "column | bar | line | area | pie | doughnut",
        "title": "string",
        "data": [{"name": "string", "labels": ["string"], "values": [number]}]
      },
      "questions": [
        {
          "qNum": number,
          "question": "string",
          "optA": "string", "optB": "string", "optC": "string", "optD": "string",
          "answer": "A | B | C | D",
          "explanation": "string"
        }
      ]
    }
  ]
}"""

SCHEMA_FORMATS = {
    EXAM_SCHEMA.name: EXAM_FORMAT,
    QUESTION_SET_SCHEMA.name: QUESTION_SET_FORMAT,
}

# =============================================================================
# Follow-up Instructions
# =============================================================================

CONTINUATION_PROMPT = (
    "Continue generating the remaining {remaining} questions. "
    "Start from question {next_item}. "
    "Output valid JSON that can be merged with the previous response: use the same "
    "structure and repeat the section titles the new questions belong to."
)

CLARIFICATION_PROMPT = (
    "The previous response was not valid JSON. "
    "Please provide a valid JSON response that follows the exact schema specified."
)

SCHEMA_CLARIFICATION_PROMPT = (
    "The previous response did not follow the required structure: {problem}. "
    "Please provide a valid JSON response that follows the exact schema specified."
)


def detect_exam_type(user_prompt: str) -> str:
    """Guess the exam type from keywords in the user's prompt."""
    prompt = user_prompt.lower()
    for exam_type, keywords in EXAM_TYPE_KEYWORDS.items():
        if any(keyword in prompt for keyword in keywords):
            return exam_type
    return "generic"


def get_system_prompt(
    exam_type: str,
    schema: DocumentSchema,
    target_items: int,
) -> str:
    """
    Build the system prompt for an exam type and document schema.

    Args:
        exam_type: Key of EXAM_TYPE_PROMPTS (unknown types fall back to generic)
        schema: Document schema the model must follow
        target_items: Number of questions the mock must contain

    Returns:
        Complete system prompt
    """
    base = EXAM_TYPE_PROMPTS.get(exam_type, EXAM_TYPE_PROMPTS["generic"])
    return (
        f"{base}\n"
        f"The mock test must contain exactly {target_items} questions in total.\n\n"
        f"{SCHEMA_FORMATS[schema.name]}"
    )


def continuation_instruction(remaining: int, next_item: int) -> str:
    return CONTINUATION_PROMPT.format(remaining=remaining, next_item=next_item)


def clarification_instruction(problem: str | None = None) -> str:
    if problem:
        return SCHEMA_CLARIFICATION_PROMPT.format(problem=problem)
    return CLARIFICATION_PROMPT
