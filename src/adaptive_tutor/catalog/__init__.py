from .library import CONCEPT_LIBRARY, fallback_questions
from .service import (
    ConceptCatalog,
    Material,
    pick_analogy,
    pick_guiding_question,
    pick_real_world_example,
)

__all__ = [
    "CONCEPT_LIBRARY",
    "ConceptCatalog",
    "Material",
    "fallback_questions",
    "pick_analogy",
    "pick_guiding_question",
    "pick_real_world_example",
]
