# Schémas Pydantic exposés par l'API (réponses hors pipeline).
#
# Le corps de POST /interpret est validé par `DreamRequest` (domain/entities.py), qui accepte le
# contrat camelCase {dreamText, personaId, analysisDepth, userContext?, priorDreams?}.

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class PersonaInfo(BaseModel):
    """Description publique d'une persona.

    Champs:
    - id: str (identifiant utilisé dans `personaId`)
    - name: str (nom affiché)
    - insight_key: str (clé du bloc d'analyse propre à la persona)
    - insight_fields: list[str] (champs du bloc d'analyse)
    - temperature / max_tokens: paramètres d'échantillonnage
    - models: list[str] (chaîne de modèles effective)
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    name: str
    insight_key: str
    insight_fields: list[str]
    temperature: float
    max_tokens: int
    models: list[str]


class CostResetResponse(BaseModel):
    """Réponse de remise à zéro du registre de coûts."""

    status: str
    cleared: int
