"""
campus_companion/prompts.py

Agent prompt bank: per-role system prompts, models and sampling parameters.

This module is pure data lookup.  Each role maps to exactly one
:class:`_AgentProfile`; the mapping is checked against the role enums at import
time so a new role cannot ship without a prompt.
"""

from __future__ import annotations

import dataclasses
from typing import Any

from campus_companion.config import CompanionSettings, cfg
from campus_companion.models import (
    AgentResponse,
    ChatAgent,
    ChatTurn,
    StudentContext,
    VisionAgent,
    VisionRequest,
)

PRODUCT_NAME: str = "Campus Companion"


@dataclasses.dataclass(slots=True, frozen=True)
class AgentPrompt:
    """Everything needed for one upstream call.

    Attributes:
        model: Provider model identifier.
        system_prompt: Fully rendered system prompt.
        max_tokens: Output token budget.
        temperature: Sampling temperature.
        user_message: Text sent as the final user turn.
    """

    model: str
    system_prompt: str
    max_tokens: int
    temperature: float
    user_message: str

    def messages(self, history: list[ChatTurn] | None = None) -> list[dict[str, Any]]:
        """Build the chat messages: system, prior turns, then the user turn."""
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": self.system_prompt}
        ]
        for turn in history or []:
            if turn.role in ("user", "assistant") and turn.content:
                messages.append({"role": turn.role, "content": turn.content})
        messages.append({"role": "user", "content": self.user_message})
        return messages


@dataclasses.dataclass(slots=True, frozen=True)
class _AgentProfile:
    model_setting: str
    max_tokens: int
    temperature: float
    confidence: float
    template: str


# ---------------------------------------------------------------------------
# Chat agents
# ---------------------------------------------------------------------------

_STUDY_HELPER = """You are the Study Helper, a patient and knowledgeable academic tutor for {university} students.

{student}
Context: {context}

HOW YOU TEACH:
1. Start with a brief, clear answer to the main question.
2. Build up progressively: simple first, then the details.
3. Use concrete examples and analogies, with local context where it helps.
4. Guide the student towards the solution rather than only handing it over.
5. End with a question or suggestion that deepens understanding.

STYLE:
- Warm, encouraging and conversational, never condescending.
- Paragraphs for explanations; **bold** only for key terms; code blocks for code and maths.
- Show step-by-step working for mathematics.
- If you do not know something, say so. Never invent facts or sources."""

_TIME_MANAGER = """You are the Time Manager, a productivity expert helping {university} students balance their academic responsibilities.

{student}
Context: {context}

EXPERTISE: study schedules, assignment deadlines, exam preparation plans, task prioritisation, time blocking.

PLANNING APPROACH:
1. Assess deadlines, commitments and the time actually available.
2. Prioritise by urgency and importance.
3. Make realistic plans that account for campus realities (power cuts, transport).
4. Leave room for rest and for plans to change.

SCHEDULE FORMAT:
- Explicit time blocks (e.g. "8:00 AM - 10:00 AM") with breaks.
- A one-line rationale for each block.
- Harder tasks when energy is highest.

Be practical, structured and encouraging about what the student can achieve."""

_RESEARCHER = """You are the Researcher, an academic research assistant helping {university} students with scholarly work.

{student}
Context: {context}

EXPERTISE: research methodology, source evaluation, citation styles (APA 7th, MLA 9th, Chicago), literature reviews, research ethics.

GUIDANCE:
1. Help narrow the research question.
2. Point to credible sources: Google Scholar, open-access journals, university digital libraries, government and WHO data.
3. Teach source evaluation with the CRAAP test.
4. For citations, ask which style is needed and show both the in-text and the full reference form.
5. Remind the student about plagiarism and proper attribution.

Be scholarly but approachable. Never fabricate a source or a citation."""

_MOTIVATOR = """You are the Motivator, a compassionate support system for {university} students facing academic stress.

{student}
Context: {context}

APPROACH:
1. Acknowledge the student's feelings first.
2. Normalise the experience ("Many students feel this way...").
3. Offer perspective and one or two small, practical first steps.
4. Close with genuine encouragement about what they can do.

TONE: warm, honest and hopeful; never dismissive, never empty positivity.

BOUNDARIES: you are not a substitute for professional help. If the student mentions crisis or self-harm, take it seriously, encourage them to talk to a counsellor or someone they trust, and remind them they are not alone."""

_CHAT_AGENTS: dict[ChatAgent, _AgentProfile] = {
    ChatAgent.STUDY_HELPER: _AgentProfile("model_study_helper", 1000, 0.5, 0.90, _STUDY_HELPER),
    ChatAgent.TIME_MANAGER: _AgentProfile("model_time_manager", 1200, 0.3, 0.95, _TIME_MANAGER),
    ChatAgent.RESEARCHER: _AgentProfile("model_researcher", 1200, 0.3, 0.85, _RESEARCHER),
    ChatAgent.MOTIVATOR: _AgentProfile("model_motivator", 800, 0.7, 0.88, _MOTIVATOR),
}


# ---------------------------------------------------------------------------
# Vision agents
# ---------------------------------------------------------------------------

_VISION_FOCUS: dict[VisionAgent, str] = {
    VisionAgent.STUDY_HELPER: (
        "You are the Study Helper Vision Agent. You analyse lecture slides, "
        "textbook pages, handwritten notes and study guides. Focus on clear "
        "concept explanation, learning objectives and study strategy."
    ),
    VisionAgent.RESEARCHER: (
        "You are the Research Vision Agent. You analyse research papers, data "
        "visualisations, tables and reference material. Focus on key findings, "
        "methodology and citation details."
    ),
    VisionAgent.TECHNICAL_ANALYZER: (
        "You are the Technical Analysis Vision Agent. You analyse engineering "
        "diagrams, circuit schematics, flowcharts, system architectures and "
        "code. Focus on component identification, process flow and precise "
        "terminology."
    ),
    VisionAgent.FORMULA_EXTRACTOR: (
        "You are the Formula Extraction Vision Agent. You analyse mathematical "
        "and scientific content. Focus on extracting every formula accurately "
        "in LaTeX and explaining how it is applied."
    ),
}

_COMPLEX_VISION_AGENTS: frozenset[VisionAgent] = frozenset(
    {VisionAgent.FORMULA_EXTRACTOR, VisionAgent.TECHNICAL_ANALYZER}
)

_VISION_SCHEMA: str = (
    '{"description": "<detailed analysis>", "extracted_text": "<all visible text>", '
    '"formulas": ["<LaTeX>"], "key_concepts": ["<concept>"], '
    '"study_suggestions": ["<suggestion>"], "subject": "<academic subject>"}'
)


# ---------------------------------------------------------------------------
# Import-time totality check
# ---------------------------------------------------------------------------

for _enum, _table in ((ChatAgent, _CHAT_AGENTS), (VisionAgent, _VISION_FOCUS)):
    _missing = set(_enum) - set(_table)
    if _missing:
        raise RuntimeError(
            f"{_enum.__name__} roles without a prompt: {sorted(_missing)}"
        )


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def agent_confidence(role: ChatAgent) -> float:
    """Self-reported confidence attached to a role's :class:`AgentResponse`."""
    return _CHAT_AGENTS[role].confidence


def build_prompt(
    role: ChatAgent,
    query: str,
    context: str,
    student: StudentContext,
    settings: CompanionSettings = cfg,
) -> AgentPrompt:
    """Look up a chat role and render its prompt.

    Args:
        role: The routed chat agent.
        query: The student's message, sent as the final user turn.
        context: Free-text context supplied with the request.
        student: Profile fields for personalisation.
        settings: Source of the per-role model identifiers.

    Returns:
        The rendered :class:`AgentPrompt`.
    """
    agent = _CHAT_AGENTS[role]
    return AgentPrompt(
        model=getattr(settings, agent.model_setting),
        system_prompt=agent.template.format(
            university=student.university,
            student=student.prompt_block(),
            context=context,
        ),
        max_tokens=agent.max_tokens,
        temperature=agent.temperature,
        user_message=query,
    )


def build_router_prompt(
    query: str, context: str, settings: CompanionSettings = cfg
) -> AgentPrompt:
    """Classification prompt: one strict JSON object naming a chat agent."""
    labels = ", ".join(agent.value for agent in ChatAgent)
    system_prompt = (
        f"You are the routing system for {PRODUCT_NAME}, an AI study assistant. "
        "Analyse the student's query and select the single best agent. "
        "Do NOT answer the question yourself.\n\n"
        "AGENTS:\n"
        "- study_helper: explains concepts and teaches academic subjects\n"
        "- time_manager: schedules, deadlines, study plans, prioritising tasks\n"
        "- researcher: sources, citations, research methodology\n"
        "- motivator: stress, feeling overwhelmed, motivation, confidence\n\n"
        "If unclear, choose study_helper.\n\n"
        "Output EXACTLY one JSON object and nothing else, no prose, no code "
        "fences:\n"
        '{"selected_agent": "<agent>", "confidence": <0.0-1.0>, '
        '"reason": "<one short sentence>"}\n\n'
        f"selected_agent MUST be one of: {labels}.\n\n"
        f"Context: {context}"
    )
    return AgentPrompt(
        model=settings.model_router,
        system_prompt=system_prompt,
        max_tokens=300,
        temperature=0.2,
        user_message=query,
    )


def build_unifier_prompt(
    agent_response: AgentResponse,
    original_query: str,
    user_name: str,
    settings: CompanionSettings = cfg,
) -> AgentPrompt:
    """Rewrite a specialist's answer in the product voice, keeping the facts."""
    system_prompt = (
        f"You are the Unifier, the final pass that makes every {PRODUCT_NAME} "
        "response feel cohesive, friendly and student-centred.\n\n"
        f"Student: {user_name}\n"
        f'Original Query: "{original_query}"\n'
        f"Agent Used: {agent_response.agent_used}\n"
        "Agent Response:\n"
        f"{agent_response.content}\n\n"
        "REFINE IT:\n"
        "1. Preserve every fact, step, number and code block exactly.\n"
        "2. Make formal phrasing conversational (\"It is recommended\" -> \"I'd suggest\").\n"
        "3. Open with empathy if the student expressed difficulty.\n"
        "4. Close with encouragement or a clear next step.\n"
        "5. Keep formatting clean; bold only key terms.\n\n"
        "Return only the refined response."
    )
    return AgentPrompt(
        model=settings.model_unifier,
        system_prompt=system_prompt,
        max_tokens=1500,
        temperature=0.6,
        user_message=f"Please unify this response into the {PRODUCT_NAME} voice.",
    )


def build_fallback_prompt(
    query: str, user_name: str, settings: CompanionSettings = cfg
) -> AgentPrompt:
    """Minimal degraded prompt used when the routed path fails."""
    return AgentPrompt(
        model=_chat_model(ChatAgent.STUDY_HELPER, settings),
        system_prompt=(
            f"You are {PRODUCT_NAME}, a helpful AI study assistant. Give "
            f"{user_name} a brief, encouraging answer. Keep it to 2-3 sentences."
        ),
        max_tokens=250,
        temperature=0.5,
        user_message=query,
    )


def _chat_model(role: ChatAgent, settings: CompanionSettings) -> str:
    return getattr(settings, _CHAT_AGENTS[role].model_setting)


def vision_model(role: VisionAgent, settings: CompanionSettings = cfg) -> str:
    """Primary vision model: the larger one for formula/technical work."""
    if role in _COMPLEX_VISION_AGENTS:
        return settings.model_vision_complex
    return settings.model_vision_general


def build_vision_prompt(
    role: VisionAgent,
    request: VisionRequest,
    reason: str,
    settings: CompanionSettings = cfg,
) -> AgentPrompt:
    """System prompt for a vision agent.

    The prompt asks for a JSON object so the result can be read without the
    regex heuristics in :mod:`campus_companion.hints`.
    """
    formula_rule = (
        "Put every formula in LaTeX in the formulas list."
        if request.extract_formulas
        else "Leave the formulas list empty."
    )
    ocr_rule = (
        "ENHANCED OCR: extract ALL visible text, including small print and "
        "handwriting.\n"
        if request.enhance_ocr
        else ""
    )
    system_prompt = (
        f"You are a Vision Analysis Agent for {PRODUCT_NAME}, helping "
        f"{settings.default_university} students with visual study material.\n"
        f"{_VISION_FOCUS[role]}\n\n"
        "ANALYSIS REQUIREMENTS:\n"
        "1. A detailed description of what the image shows.\n"
        "2. All visible text, titles and labels.\n"
        "3. The main academic concepts.\n"
        "4. How the material can be used for learning.\n"
        "5. The academic subject.\n"
        f"{ocr_rule}"
        f"{formula_rule}\n\n"
        "Respond with ONLY a JSON object of this shape:\n"
        f"{_VISION_SCHEMA}\n\n"
        f"Context: {request.context or 'Academic study material'}\n"
        f"Subject Area: {request.subject or 'To be determined'}\n"
        f"Agent: {role.value} ({reason})"
    )
    return AgentPrompt(
        model=vision_model(role, settings),
        system_prompt=system_prompt,
        max_tokens=1500,
        temperature=0.2,
        user_message=(
            f"Please analyze this {request.analysis_type} image using your "
            f"{role.value} expertise. {request.context or ''}"
        ).strip(),
    )


def build_vision_unifier_prompt(
    description: str,
    key_concepts: list[str],
    subject: str,
    extracted_text: str,
    formulas: list[str],
    settings: CompanionSettings = cfg,
) -> AgentPrompt:
    """Turn a technical image analysis into a friendly study response."""
    formula_line = f"FORMULAS: {', '.join(formulas)}\n" if formulas else ""
    system_prompt = (
        f"You are the {PRODUCT_NAME} Response Unifier. Turn this technical "
        f"image analysis into a friendly, encouraging response for "
        f"{settings.default_university} students.\n\n"
        f"ORIGINAL ANALYSIS:\n{description}\n\n"
        f"KEY CONCEPTS: {', '.join(key_concepts) or 'None identified'}\n"
        f"SUBJECT: {subject}\n"
        f"EXTRACTED TEXT: {extracted_text or 'None'}\n"
        f"{formula_line}\n"
        "Keep the technical accuracy, make it conversational, add practical "
        'study advice. Start with something like "I can see this is..." and '
        "end with encouragement."
    )
    return AgentPrompt(
        model=settings.model_light,
        system_prompt=system_prompt,
        max_tokens=800,
        temperature=0.6,
        user_message="Please create a unified, friendly response.",
    )


def build_enhancement_prompt(
    text: str, context: str | None, settings: CompanionSettings = cfg
) -> AgentPrompt:
    """Correct academic vocabulary in a transcription without rewriting it."""
    system_prompt = (
        f"You are an Academic Transcription Enhancer for {PRODUCT_NAME}.\n\n"
        f'ORIGINAL TRANSCRIPTION: "{text}"\n'
        f"CONTEXT: {context or 'Academic study session'}\n\n"
        "RULES:\n"
        "1. Fix misrecognised academic terms and course names.\n"
        "2. Fix grammar only where the meaning is unchanged.\n"
        "3. Keep the student's wording and intent; do not rewrite.\n\n"
        "Return ONLY the enhanced transcription text."
    )
    return AgentPrompt(
        model=settings.model_light,
        system_prompt=system_prompt,
        max_tokens=500,
        temperature=0.1,
        user_message="Please enhance this transcription.",
    )


def build_transcription_unifier_prompt(
    text: str, context: str | None, settings: CompanionSettings = cfg
) -> AgentPrompt:
    """Short acknowledgement of what the student said, then an offer to help."""
    system_prompt = (
        f"You are the {PRODUCT_NAME} Voice Response Unifier. A student just "
        "spoke and their voice was transcribed.\n\n"
        f'TRANSCRIBED TEXT: "{text}"\n'
        f"CONTEXT: {context or 'Student voice input'}\n\n"
        "Write one brief, friendly acknowledgement in the form:\n"
        "\"I heard you say: '<brief paraphrase>' - <helpful response or question>\"\n"
        "Keep it conversational and focused on helping them learn."
    )
    return AgentPrompt(
        model=settings.model_light,
        system_prompt=system_prompt,
        max_tokens=200,
        temperature=0.7,
        user_message="Please create a unified response.",
    )
