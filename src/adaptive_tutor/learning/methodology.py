from __future__ import annotations

from typing import Dict, Optional

from adaptive_tutor.data_models import LearningStyle, Methodology, Role

ROLE_DEFAULT_METHODOLOGY: Dict[Role, Methodology] = {
    Role.STUDENT: Methodology.VISUAL_DEMO,
    Role.INSTRUCTOR: Methodology.SCAFFOLDING,
    Role.ADMIN: Methodology.DIRECT_INSTRUCTION,
    Role.CONTENT_CREATOR: Methodology.DISCOVERY,
    Role.MENTOR: Methodology.SOCRATIC,
}

STYLE_METHODOLOGY: Dict[str, Methodology] = {
    "visual": Methodology.VISUAL_DEMO,
    "kinesthetic": Methodology.DISCOVERY,
    "auditory": Methodology.SOCRATIC,
    "reading": Methodology.DIRECT_INSTRUCTION,
}

# Which learning style a methodology exercises, used when inferring styles from outcomes.
METHODOLOGY_STYLE: Dict[Methodology, str] = {
    Methodology.VISUAL_DEMO: "visual",
    Methodology.SOCRATIC: "auditory",
    Methodology.DISCOVERY: "kinesthetic",
    Methodology.DIRECT_INSTRUCTION: "reading",
    Methodology.SCAFFOLDING: "reading",
}

DOMINANCE_MARGIN = 15.0


def dominant_style(style: LearningStyle, margin: float = DOMINANCE_MARGIN) -> Optional[str]:
    """Return the style that beats every other score by more than `margin` points, if any."""
    ranked = sorted(style.as_dict().items(), key=lambda item: item[1], reverse=True)
    (top_name, top_score), (_, runner_up) = ranked[0], ranked[1]
    if top_score - runner_up > margin:
        return top_name
    return None


def resolve_methodology(role: Role, style: LearningStyle) -> Methodology:
    """
    Pick the presentation methodology for a learner.

    A learning style that dominates by more than 15 points always wins; otherwise the
    role default from `ROLE_DEFAULT_METHODOLOGY` applies.
    """
    dominant = dominant_style(style)
    if dominant is not None:
        return STYLE_METHODOLOGY[dominant]
    return ROLE_DEFAULT_METHODOLOGY[role]
