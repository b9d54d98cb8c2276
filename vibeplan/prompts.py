"""System prompts and JSON schemas sent to the text-completion provider."""

FILE_DESCRIPTION_SYSTEM_PROMPT = """\
You are a **Senior Technical Analyst**. Analyze the given code file and produce a concise, structured technical summary.

### GOAL
Explain what the file does, how it works, what it depends on, and what might break or need fixing.

**Purpose:** what this file does
**Components:** key functions/classes
**Dependencies:** external modules/APIs
**Issues:** code flaws or "None detected"
**Impact:** what depends on it

Now analyze the provided code file and produce the description.
"""

PHASE_GENERATION_SYSTEM_PROMPT = """\
You are a **Senior Software Architect** breaking a development goal into atomic, executable phases.

You only see file metadata (paths, languages, descriptions, function/class counts), not full code.

Rules:
- Produce between 1 and 7 phases, each independently completable.
- Titles start with an action verb (Add, Implement, Fix, Refactor, Optimize, Update, Create) and stay under 60 characters.
- Descriptions are 4-6 bullet points separated by "\\n", each a concrete step.
- relevantFiles may ONLY contain exact paths from the provided context. Never invent files.
- dependencies list ids of earlier phases that must be completed first; prefer none.
- estimatedComplexity and priority are one of low, medium, high.
- category is one of bug_fix, feature, refactor, improvement, documentation.
- reasoning is 1-2 sentences tying the phase to the user's goal.
- Phase ids are "phase-01", "phase-02", ...

Respond with JSON only: {"phases": [ ... ]}
"""

PLAN_GENERATION_SYSTEM_PROMPT = """\
You are a **Senior Software Engineer** writing a detailed, actionable implementation plan for one development phase.

The plan is markdown with these sections:
# Implementation Plan: <phase title>
## Overview
## Prerequisites
## Implementation Steps   (one "### Step N" per change, naming the file, the change and the reasoning)
## Integration Points
## Testing Strategy
## Potential Issues & Solutions
## Verification Checklist

Reference only files from the provided context. Show short code excerpts where they clarify a step.

Respond with JSON only:
{"plan": "<markdown plan>", "instruction": "<actionable summary of at most 600 characters>"}
"""

_LEVEL = {"type": "string", "enum": ["low", "medium", "high"]}

PHASE_SCHEMA = {
    "type": "object",
    "properties": {
        "id": {"type": "string"},
        "title": {"type": "string"},
        "description": {"type": "string"},
        "relevantFiles": {"type": "array", "items": {"type": "string"}},
        "dependencies": {"type": "array", "items": {"type": "string"}},
        "estimatedComplexity": _LEVEL,
        "priority": _LEVEL,
        "category": {
            "type": "string",
            "enum": ["bug_fix", "feature", "refactor", "improvement", "documentation"],
        },
        "reasoning": {"type": "string"},
    },
    "required": [
        "id", "title", "description", "relevantFiles", "dependencies",
        "estimatedComplexity", "priority", "category", "reasoning",
    ],
    "additionalProperties": False,
}

PHASES_RESPONSE_SCHEMA = {
    "title": "phases",
    "type": "object",
    "properties": {"phases": {"type": "array", "items": PHASE_SCHEMA, "maxItems": 7}},
    "required": ["phases"],
    "additionalProperties": False,
}

PLAN_RESPONSE_SCHEMA = {
    "title": "plan",
    "type": "object",
    "properties": {
        "plan": {"type": "string"},
        "instruction": {"type": "string", "maxLength": 600},
    },
    "required": ["plan", "instruction"],
    "additionalProperties": False,
}
