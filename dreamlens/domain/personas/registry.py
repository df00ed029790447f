"""Table de correspondance des personas (identifiant -> variante)."""

from __future__ import annotations

from dreamlens.domain.errors import UnknownPersonaError
from dreamlens.domain.personas.base import Persona
from dreamlens.domain.personas.freud import FreudPersona
from dreamlens.domain.personas.jung import JungPersona
from dreamlens.domain.personas.lakshmi import LakshmiPersona
from dreamlens.domain.personas.mary import MaryPersona

PERSONAS: dict[str, Persona] = {
    p.persona_id: p for p in (JungPersona(), FreudPersona(), MaryPersona(), LakshmiPersona())
}
ALIASES: dict[str, str] = {"neuroscientist": "mary"}


def get_persona(persona_id: str) -> Persona:
    """Retourne la persona associée à un identifiant (alias acceptés).

    Raises:
        UnknownPersonaError: Identifiant inconnu.
    """
    key = (persona_id or "").strip().lower()
    key = ALIASES.get(key, key)
    try:
        return PERSONAS[key]
    except KeyError:
        raise UnknownPersonaError(persona_id) from None


def list_personas() -> list[Persona]:
    """Personas disponibles, dans l'ordre d'enregistrement."""
    return list(PERSONAS.values())
