"""Central versioning and schema constants for the storefront crawler."""

__all__ = ["__version__", "CONFIG_SCHEMA_VERSION"]

#: Semantic version of this codebase (bump using SemVer).
__version__ = "0.3.0"

#: Configuration schema version. Version 1 files used the camelCase actor
#: input keys (``startUrls``, ``batchSize``...); version 2 is snake_case.
CONFIG_SCHEMA_VERSION = 2
