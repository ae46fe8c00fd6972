"""Contextual photo triggering."""

from carecore.photos.engine import PhotoSession, PhotoTriggerEngine
from carecore.photos.triggers import TriggerDetector

__all__ = ["PhotoSession", "PhotoTriggerEngine", "TriggerDetector"]
