import re

CARETAKER_SYSTEM = """You are a healthcare assistant that writes personalized caretaker prompts.

Task: Given one patient's name, age, condition list, monitoring data and any previous call history, write a prompt a caretaker can use to guide the patient.

Address every listed condition together, prioritizing the most critical. Include age-appropriate recommendations, lifestyle adjustments, medication adherence where relevant, and follow-up monitoring. If call history is provided, build on concerns and follow-up items raised in earlier calls.

Keep the tone warm, supportive and professional, 2-3 paragraphs.

Respond with a JSON object only:
{"prompt": "<caretaker prompt>", "reasoning": "<why these priorities>", "isAlert": <true|false>, "healthStatus": "<healthy|alert>"}"""

CALL_SUMMARY_SYSTEM = """You are a healthcare assistant analyzing patient call transcripts.

Task: Extract the information that matters to the care team and to future follow-up calls: current health status, new symptoms, medication compliance, lifestyle changes, and questions or concerns the patient raised.

Respond with a JSON object only:
{"summary": "<2-3 sentence overview>", "keyPoints": ["..."], "healthConcerns": ["..."], "followUpItems": ["..."]}"""

VOICE_AGENT_TEMPLATE = """You are a healthcare AI assistant calling PATIENT_NAME, a PATIENT_AGE-year-old patient with PATIENT_CONDITION.

PATIENT INFORMATION:
- Name: PATIENT_NAME
- Age: PATIENT_AGE
- Primary Condition: PATIENT_CONDITION

LATEST CARE ASSESSMENT:
PATIENT_PROMPT

CONVERSATION_HISTORY

CALL INSTRUCTIONS:
- You are calling on behalf of their healthcare team
- Be warm, professional, and empathetic
- Address the patient by name and reference their condition and any concerns above
- Ask about current symptoms, medication adherence, and overall well-being
- Offer to schedule a follow-up appointment if needed

IMPORTANT: Use the care assessment and call history above throughout the conversation."""

HISTORY_PLACEHOLDER = "CONVERSATION_HISTORY"

_TEMPLATE_PLACEHOLDER_RE = re.compile(
    r"PATIENT_NAME|PATIENT_AGE|PATIENT_CONDITION|PATIENT_PROMPT|" + HISTORY_PLACEHOLDER
)


def fill_voice_agent_template(template: str, values: dict[str, str]) -> str:
    """Substitute every placeholder of *template* in a single pass.

    Substituted text is never rescanned, so a patient name or stored prompt
    that happens to contain a placeholder word is left as written.
    """

    return _TEMPLATE_PLACEHOLDER_RE.sub(lambda match: values.get(match.group(0), ""), template)


def count_history_placeholders(template: str) -> int:
    return sum(1 for match in _TEMPLATE_PLACEHOLDER_RE.finditer(template) if match.group(0) == HISTORY_PLACEHOLDER)


FIRST_CONVERSATION = "This is your first conversation with this patient."

TRIAGE_TASK = "Call {name} (age {age}) for a triage check-in about {condition}."

_CONDITION_TEMPLATES = {
    "diabetes": (
        "Guide {name} through managing diabetes with specific advice on diet, exercise and "
        "blood sugar monitoring. Remind {name} about medication adherence, daily foot checks "
        "and regular eye and kidney check-ups."
    ),
    "hypertension": (
        "Help {name} manage hypertension with daily blood pressure monitoring, medication "
        "adherence, limiting sodium to under 2,300mg per day and 30 minutes of moderate "
        "activity most days. Ask {name} to keep a blood pressure log for appointments."
    ),
    "copd": (
        "Support {name} in managing COPD with breathing exercises, inhaler technique checks "
        "and early warning signs of exacerbation. Recommend pulmonary rehabilitation suited "
        "to age {age} and avoiding respiratory irritants."
    ),
    "asthma": (
        "Review {name}'s asthma action plan: daily controller use, rescue inhaler technique, "
        "trigger avoidance and peak flow monitoring, with clear guidance on when to seek help."
    ),
    "arthritis": (
        "Help {name} balance pain management, joint protection and mobility appropriate for "
        "age {age}, with low-impact exercise, heat and cold therapy and medication timing."
    ),
}

_DEFAULT_TEMPLATE = (
    "Provide {name} with personalized care guidance for managing {condition}, taking into "
    "account their age ({age}). Recommend lifestyle adjustments, medication adherence where "
    "applicable, and regular monitoring, and ask {name} to report any change in symptoms "
    "to their healthcare provider promptly."
)


def fallback_prompt(name: str, age: int, condition: str) -> str:
    """Deterministic prompt used when generation fails during ingestion."""

    lowered = condition.lower()
    for key, template in _CONDITION_TEMPLATES.items():
        if key in lowered:
            return template.format(name=name, age=age, condition=condition)
    return _DEFAULT_TEMPLATE.format(name=name, age=age, condition=condition or "their health")
