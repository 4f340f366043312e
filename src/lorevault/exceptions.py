"""Custom exceptions for LoreVault."""


class LoreVaultError(Exception):
    """Base exception for all LoreVault errors."""


class ConfigError(LoreVaultError):
    """Configuration-related errors."""


class InvalidQueryError(LoreVaultError):
    """A query was rejected before any retrieval work started."""


class ExportError(LoreVaultError):
    """Lorebook or fallback pack export errors."""


class ScopeAssemblyError(LoreVaultError):
    """Context assembly failed for a single scope."""

    def __init__(self, scope: str, stage: str, cause: Exception):
        self.scope = scope
        self.stage = stage
        self.cause = cause
        label = scope or "(all)"
        super().__init__(f"Scope '{label}' failed during {stage}: {cause}")


class VaultError(LoreVaultError):
    """A vault snapshot could not be read."""
