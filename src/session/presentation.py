"""
LOT 5: Session - Presentation Helpers

Aides d'affichage du décompte d'expiration (fenêtre "session sur le point
d'expirer").
"""

from enum import Enum


WARNING_WINDOW_SECONDS = 5 * 60


class ExpiryUrgency(Enum):
    """Niveau d'urgence du décompte."""

    CRITICAL = "critical"  # < 1 minute
    HIGH = "high"  # < 3 minutes
    NOTICE = "notice"

    @classmethod
    def for_seconds(cls, seconds: int) -> "ExpiryUrgency":
        if seconds < 60:
            return cls.CRITICAL
        if seconds < 180:
            return cls.HIGH
        return cls.NOTICE


def format_countdown(seconds: int) -> str:
    """
    Formate un décompte en M:SS.

    Example:
        format_countdown(290) == "4:50"
    """
    seconds = max(0, int(seconds))
    minutes, secs = divmod(seconds, 60)
    return f"{minutes}:{secs:02d}"


def progress_percentage(seconds: int, window: int = WARNING_WINDOW_SECONDS) -> float:
    """Part restante de la fenêtre d'avertissement, bornée à [0, 100]."""
    if window <= 0:
        raise ValueError("window must be positive")
    return min(100.0, max(0.0, seconds / window * 100))
