from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class FallbackResult:
    """Outcome of one walk down the fallback ladder."""
    rows: List[Dict[str, Any]]
    level: Optional[str] = None  # name of the level that produced rows, None if nothing did
    provenance: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass
class StepOutcome:
    """Rows produced by a single analysis step plus what happened on the way."""
    rows: List[Dict[str, Any]]
    source: str  # "sql" | "vector"
    errors: List[str] = field(default_factory=list)
    sql_query_type: Optional[str] = None
    fallback: Optional[FallbackResult] = None

    @property
    def used_fallback(self) -> bool:
        return self.fallback is not None
