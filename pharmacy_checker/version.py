"""Central versioning and schema constants for the scanner."""

__all__ = ["__version__", "CONFIG_SCHEMA_VERSION", "PROFILE_SCHEMA_VERSION"]

#: Semantic version of this codebase (bump using SemVer).
__version__ = "0.1.0"

#: Scanner configuration schema version (increment if breaking changes to config format).
CONFIG_SCHEMA_VERSION = 1

#: Site profile schema version (increment if breaking changes to profile files).
PROFILE_SCHEMA_VERSION = 1
