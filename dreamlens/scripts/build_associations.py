"""
Construit hors ligne les associations fragment/thème du magasin de connaissances.

Actions:
- Lire le fichier seed JSON (`themes`, `fragments`)
- Calculer les embeddings des thèmes (libellé + mots-clés) et des fragments avec l'embedder configuré
- Calculer la similarité cosinus de chaque couple (numpy) et garder les lignes au-dessus du seuil
- Écrire `themes[*].embedding`, `fragments[*].embedding` et `associations` dans le fichier cible

Environment:
- EMBEDDINGS_PROVIDER/OPENAI_API_KEY: sélection de l'embedder via le conteneur.

Usage:
    python -m dreamlens.scripts.build_associations --floor 0.3
"""

from __future__ import annotations

import argparse
import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import numpy as np  # type: ignore

from dreamlens.core.container import build_embedder
from dreamlens.core.settings import get_settings
from dreamlens.domain.themes import UNIVERSAL_THEMES

DEFAULT_FLOOR = 0.3


def theme_text(theme: dict[str, Any]) -> str:
    """Texte embeddé pour un thème : libellé suivi des mots-clés."""
    keywords = ", ".join(theme.get("keywords") or [])
    return f"{theme['label']}: {keywords}" if keywords else str(theme["label"])


def cosine_matrix(a: list[list[float]], b: list[list[float]]) -> np.ndarray:
    """Matrice des similarités cosinus entre les lignes de `a` et celles de `b`."""
    xa = np.asarray(a, dtype="float32")
    xb = np.asarray(b, dtype="float32")
    na = np.linalg.norm(xa, axis=1, keepdims=True)
    nb = np.linalg.norm(xb, axis=1, keepdims=True)
    xa = xa / np.where(na == 0, 1.0, na)
    xb = xb / np.where(nb == 0, 1.0, nb)
    return np.clip(xa @ xb.T, -1.0, 1.0)


def build_associations(
    data: dict[str, Any],
    embed: Callable[[list[str]], list[list[float]]],
    *,
    floor: float = DEFAULT_FLOOR,
) -> dict[str, Any]:
    """Calcule embeddings et associations pour un seed.

    Args:
        data: Contenu du seed (`themes` facultatif, `fragments`).
        embed: Fonction d'embedding par lot.
        floor: Similarité minimale conservée.

    Returns:
        dict: Nouveau seed avec embeddings et associations, triées par thème puis similarité
        décroissante.
    """
    themes = data.get("themes") or [
        t.model_dump(exclude={"embedding"}) for t in UNIVERSAL_THEMES
    ]
    fragments = data.get("fragments") or []
    out: dict[str, Any] = {**data, "themes": themes, "fragments": fragments, "associations": []}
    if not themes or not fragments:
        return out

    theme_vectors = embed([theme_text(t) for t in themes])
    fragment_vectors = embed([f["text"] for f in fragments])
    sims = cosine_matrix(theme_vectors, fragment_vectors)

    associations: list[dict[str, Any]] = []
    for i, theme in enumerate(themes):
        theme["embedding"] = [float(x) for x in theme_vectors[i]]
        rows = [
            {
                "fragmentId": fragments[j]["id"],
                "themeCode": theme["code"],
                "similarity": round(float(sims[i, j]), 4),
            }
            for j in range(len(fragments))
            if float(sims[i, j]) >= floor
        ]
        rows.sort(key=lambda r: r["similarity"], reverse=True)
        associations.extend(rows)
    for j, fragment in enumerate(fragments):
        fragment["embedding"] = [float(x) for x in fragment_vectors[j]]
    out["associations"] = associations
    return out


def main(argv: list[str] | None = None) -> None:
    """
    Point d'entrée principal du calcul des associations.

    Lit le seed, calcule les associations avec l'embedder configuré et écrit le résultat.
    """
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Build fragment/theme associations")
    parser.add_argument("--seed", default=settings.KNOWLEDGE_SEED_PATH, help="Seed JSON file")
    parser.add_argument("--floor", type=float, default=DEFAULT_FLOOR, help="Similarity floor")
    parser.add_argument("--out", default=None, help="Output file (defaults to --seed)")
    args = parser.parse_args(argv)

    embedder = build_embedder(settings)
    if embedder is None:
        parser.error("no embedder configured (set OPENAI_API_KEY or EMBEDDINGS_PROVIDER=local)")

    seed_path = Path(args.seed)
    data = json.loads(seed_path.read_text(encoding="utf-8"))
    result = build_associations(data, embedder.embed, floor=args.floor)

    out_path = Path(args.out) if args.out else seed_path
    out_path.write_text(json.dumps(result, ensure_ascii=False, indent=2), encoding="utf-8")
    print(
        f"Associations -> {out_path} "
        f"({len(result['associations'])} rows, {len(result['fragments'])} fragments)"
    )


if __name__ == "__main__":
    main()
