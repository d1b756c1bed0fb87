PROMPT_VERSION = "1.0.0"

DIFFICULTY_DEFINITIONS = {
    "easy": {
        "description": "Direct recall, definitions, basic examples",
        "cognitive_level": "Knowledge and Comprehension",
        "complexity": "Single concept, straightforward application",
        "examples": "Define terms, identify facts, simple calculations",
    },
    "medium": {
        "description": "Conceptual understanding, application-based, multi-step reasoning",
        "cognitive_level": "Application and Analysis",
        "complexity": "Multiple concepts, requires understanding relationships",
        "examples": "Apply formulas to new situations, compare concepts, solve multi-step problems",
    },
    "hard": {
        "description": "Analytical, case-based, problem solving, edge cases",
        "cognitive_level": "Synthesis and Evaluation",
        "complexity": "Complex scenarios, requires critical thinking",
        "examples": "Analyze scenarios, evaluate solutions, solve problems with multiple variables",
    },
}

QUESTION_TYPE_SPECS = {
    "mcq-single": {
        "name": "Multiple Choice (Single Answer)",
        "instructions": "Generate a question with exactly 4 options where only ONE option is correct.",
    },
    "mcq-multiple": {
        "name": "Multiple Choice (Multiple Answers)",
        "instructions": "Generate a question with 4-6 options where 2 or more options are correct.",
    },
    "true-false": {
        "name": "True/False",
        "instructions": "Generate a statement that is clearly true or false.",
    },
    "numerical": {
        "name": "Numerical Answer",
        "instructions": "Generate a problem requiring a numerical answer with calculation.",
    },
    "short-answer": {
        "name": "Short Answer",
        "instructions": "Generate a question requiring a brief text response (1-3 sentences).",
    },
    "long-answer": {
        "name": "Long Answer / Essay",
        "instructions": "Generate a question requiring detailed explanation (paragraph or more).",
    },
    "case-based": {
        "name": "Case Study Based",
        "instructions": "Generate a scenario/case study followed by one multiple-choice question about it.",
    },
}

DEFAULT_MARKS = {"easy": 1, "medium": 2, "hard": 3}
DEFAULT_NEGATIVE_MARKS = {"easy": 0, "medium": 0.5, "hard": 1}
DEFAULT_RECOMMENDED_TIME = {"easy": 60, "medium": 120, "hard": 180}

SYSTEM_PROMPT = """You are an expert educational content creator writing high-quality quiz questions for school students. Your questions must be accurate, clear, aligned with the topic and learning objectives, and match the requested difficulty exactly.

Rules:
- Never generate inappropriate, offensive, or biased content.
- All answer options must be plausible.
- Provide educational explanations for answers.
- Output ONLY valid JSON, no additional text."""


def _type_fields(question_type: str) -> str:
    if question_type in ("mcq-single", "mcq-multiple", "true-false", "case-based"):
        fields = """
      "options": [
        {"text": "Option A", "is_correct": false, "explanation": "Why this option is incorrect"},
        {"text": "Option B", "is_correct": true, "explanation": "Why this is the correct answer"}
      ],
      "correct_answer": "The exact text of the correct option","""
        if question_type == "case-based":
            fields = """
      "case_study": "The complete scenario with all necessary details (at least 50 characters)",""" + fields
        return fields
    if question_type == "numerical":
        return """
      "numerical_answer": {"value": 42, "tolerance": 0.1, "unit": "meters"},
      "correct_answer": "42 meters",
      "solution_steps": ["Step 1: ...", "Final answer: 42 meters"],"""
    return """
      "expected_answer": "The complete model answer that would receive full marks",
      "correct_answer": "The complete model answer",
      "keywords": ["key", "terms", "that", "must", "appear"],"""


def build_question_prompt(
    topic: str,
    content: str,
    difficulty: str,
    question_type: str,
    count: int,
    context: dict | None = None,
) -> tuple[str, str]:
    """Return ``(system_prompt, user_prompt)`` for one generation batch."""
    level = DIFFICULTY_DEFINITIONS.get(difficulty)
    spec = QUESTION_TYPE_SPECS.get(question_type)
    if level is None or spec is None:
        raise ValueError(f"Invalid difficulty or question type: {difficulty}, {question_type}")

    context_section = ""
    if context:
        objectives = ", ".join(context.get("learning_objectives") or []) or "Not specified"
        context_section = f"""
ADDITIONAL CONTEXT:
- Learning Objectives: {objectives}
- Grade Level: {context.get("grade") or "Not specified"}
- Subject: {context.get("subject") or "Not specified"}
"""

    user_prompt = f"""Generate exactly {count} {spec["name"]} question(s) about the following topic.

TOPIC: {topic}

SOURCE CONTENT:
{content or "Use your knowledge about this topic."}
{context_section}
DIFFICULTY LEVEL: {difficulty.upper()}
- Description: {level["description"]}
- Cognitive Level: {level["cognitive_level"]}
- Complexity: {level["complexity"]}
- Example Types: {level["examples"]}

QUESTION TYPE: {spec["name"]}
- Instructions: {spec["instructions"]}

OUTPUT FORMAT:
Return a JSON object with a "questions" array. Each question MUST have this structure:
{{
  "questions": [
    {{
      "text": "The complete question text",
      "difficulty": "{difficulty}",
      "type": "{question_type}",
      "topic": "{topic}",{_type_fields(question_type)}
      "explanation": "Detailed explanation of why the correct answer is correct",
      "hint": "A helpful hint for students who are struggling",
      "marks": {DEFAULT_MARKS[difficulty]},
      "negative_marks": {DEFAULT_NEGATIVE_MARKS[difficulty]},
      "recommended_time": {DEFAULT_RECOMMENDED_TIME[difficulty]},
      "tags": ["relevant", "topic", "tags"]
    }}
  ]
}}

Generate EXACTLY {count} question(s) and vary the concepts they test."""
    return SYSTEM_PROMPT, user_prompt
