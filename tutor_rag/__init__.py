from .context import TutorContext

__all__ = ["TutorContext"]
