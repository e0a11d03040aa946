"""Exceptions levées par httpknock."""


class KnockError(Exception):
    pass


class ConfigError(KnockError, ValueError):
    """Configuration invalide : fatale, aucun listener ne doit démarrer."""


class PeerError(KnockError):
    """Adresse du client illisible : répondue en 500, jamais en 403."""
