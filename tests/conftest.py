"""Configuration de test pour pytest avec gestion des chemins.

Ce module configure pytest pour résoudre les imports `dreamlens` en ajoutant la racine du projet au
sys.path, et remet à zéro le registre de coûts partagé entre deux tests.
"""

import os
import sys

import pytest

# Ensure project root is on sys.path so that
# imports like `from dreamlens...` resolve.
CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)


@pytest.fixture(autouse=True)
def reset_cost_ledger():
    """Vide le registre de coûts du conteneur avant et après chaque test."""
    from dreamlens.core.container import container

    container.ledger.reset()
    yield container.ledger
    container.ledger.reset()
