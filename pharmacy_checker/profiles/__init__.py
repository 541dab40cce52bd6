from .models import (
    ExtractionRules,
    FieldRule,
    NavigationStep,
    SiteProfile,
)
from .store import ProfileStore

__all__ = ["ExtractionRules", "FieldRule", "NavigationStep", "ProfileStore", "SiteProfile"]
