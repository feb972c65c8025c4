"""
Module exceptions.py - Erreurs levées par la voie visuelle
Les configurations invalides et les entrées mal formées sont signalées à la
construction ou à l'entrée d'une couche ; aucune couche ne les intercepte.
"""


class VisionError(Exception):
    """Classe de base de toutes les erreurs de retinocortex."""


class ConfigurationError(VisionError, ValueError):
    """Un paramètre de couche ou de pipeline est hors de son domaine."""


class GridShapeError(VisionError, ValueError):
    """Une grille d'entrée ne correspond pas aux dimensions configurées."""


class InvariantViolation(VisionError, RuntimeError):
    """Un invariant interne est rompu (faute de logique)."""
