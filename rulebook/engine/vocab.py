"""Closed vocabularies shared by models, schemas and the engine."""


class Scope:
    BANK = "bank"
    POS = "pos"
    BOTH = "both"


class Source:
    BANK = "bank"
    POS = "pos"

    ALL = (BANK, POS)


class RecordState:
    UNCATEGORIZED = "uncategorized"
    CATEGORIZED = "categorized"
    SPLIT = "split"
    MANUALLY_OVERRIDDEN = "manually_overridden"


class MatchType:
    EXACT = "exact"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    REGEX = "regex"


class TextField:
    DESCRIPTION = "description"
    ITEM_NAME = "item_name"


class TransactionType:
    DEBIT = "debit"
    CREDIT = "credit"
    ANY = "any"


# Which record sources a rule scope reaches
SCOPE_SOURCES: dict[str, frozenset[str]] = {
    Scope.BANK: frozenset({Source.BANK}),
    Scope.POS: frozenset({Source.POS}),
    Scope.BOTH: frozenset({Source.BANK, Source.POS}),
}


def scope_accepts(scope: str, source: str) -> bool:
    return source in SCOPE_SOURCES.get(scope, frozenset())


def scopes_reaching(source: str) -> list[str]:
    """Rule scopes whose rules may categorize a record from ``source``."""
    return [scope for scope, sources in SCOPE_SOURCES.items() if source in sources]
