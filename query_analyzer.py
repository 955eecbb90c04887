"""
Query classification for hybrid search routing.

`analyze_query` inspects free text and picks the retrieval strategy:

- keyword        code symbols, paths, file names
- vector         natural-language questions
- keyword_boost  short lookups of a known technology
- hybrid         everything else

Rules are checked in that order, so a question mentioning a symbol or a file
is routed to keyword search.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field

CODE_PATTERNS = (
    re.compile(r"\b(?:function|class|import|const|let|var|def)\b", re.IGNORECASE),
    re.compile(r"\(\)"),
    re.compile(r"\[\]"),
    re.compile(r"\{\}"),
    re.compile(r"=>"),
    re.compile(r"::"),
    re.compile(r"\w\.\w"),  # dotted identifier: os.path, user.id
)

NAVIGATIONAL_PATTERNS = (
    re.compile(r"[/\\]"),
    re.compile(
        r"\.(?:py|js|jsx|ts|tsx|mjs|cjs|json|md|go|rs|java|kt|rb|php|c|h|cpp|hpp|cs|sql|"
        r"sh|yaml|yml|toml|ini|cfg|html|css)\b",
        re.IGNORECASE,
    ),
    re.compile(r"\w\("),  # call parenthesis: getUser(id
)

# Whole-token technology names. General concepts such as "authentication" or
# "database" are not listed.
TECHNICAL_TERMS = frozenset(
    {
        "api", "auth", "jwt", "oauth", "sql", "sqlite", "react", "vue", "angular",
        "node", "nodejs", "python", "django", "flask", "fastapi", "docker",
        "kubernetes", "k8s", "aws", "azure", "gcp", "postgresql", "postgres",
        "mysql", "mongodb", "redis", "graphql", "rest", "grpc", "microservice",
        "lancedb", "typescript", "javascript", "webpack", "vite", "terraform",
    }
)

QUESTION_WORDS = frozenset({"how", "what", "why", "when", "where", "should", "can", "could", "would"})

STOP_WORDS = frozenset({"the", "and", "or", "but", "for", "with"})

# Concept -> related terms appended by expand_query.
QUERY_EXPANSIONS = {
    "frontend": "frontend UI user interface client-side",
    "backend": "backend server API service-side",
    "database": "database DB storage persistence data",
    "auth": "authentication authorization login security jwt oauth",
    "api": "API endpoint REST GraphQL service interface",
    "react": "React ReactJS component JSX hooks",
    "test": "test testing unit integration spec TDD",
    "deploy": "deploy deployment CI CD pipeline docker kubernetes",
}

_TOKEN_RE = re.compile(r"[a-z0-9_+#-]+")


@dataclass
class QueryAnalysis:
    """Routing decision for one query."""

    type: str = "unknown"
    strategy: str = "hybrid"
    keywords: list[str] = field(default_factory=list)
    has_code_elements: bool = False
    has_specific_terms: bool = False
    is_natural_language: bool = False
    is_navigational: bool = False
    confidence: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


def extract_keywords(query: str) -> list[str]:
    """Whitespace tokens longer than two characters, stop-words removed."""
    return [w for w in query.split() if len(w) > 2 and w.lower() not in STOP_WORDS]


def analyze_query(query: str) -> QueryAnalysis:
    """Classify a query into a retrieval strategy with a confidence score."""
    analysis = QueryAnalysis()
    query = query or ""
    tokens = _TOKEN_RE.findall(query.lower())

    analysis.has_code_elements = any(p.search(query) for p in CODE_PATTERNS)
    analysis.has_specific_terms = any(t in TECHNICAL_TERMS for t in tokens)
    analysis.is_natural_language = any(t in QUESTION_WORDS for t in tokens)
    analysis.is_navigational = any(p.search(query) for p in NAVIGATIONAL_PATTERNS)
    analysis.keywords = extract_keywords(query)

    if analysis.has_code_elements or analysis.is_navigational:
        analysis.strategy = "keyword"
        analysis.type = "code_search"
        analysis.confidence = 0.9
    elif analysis.is_natural_language and not analysis.has_specific_terms:
        analysis.strategy = "vector"
        analysis.type = "semantic_question"
        analysis.confidence = 0.8
    elif analysis.has_specific_terms and len(analysis.keywords) <= 3:
        analysis.strategy = "keyword_boost"
        analysis.type = "specific_lookup"
        analysis.confidence = 0.85
    else:
        analysis.strategy = "hybrid"
        analysis.type = "mixed_query"
        analysis.confidence = 0.7

    return analysis


def expand_query(query: str) -> str:
    """Append related terms for the first concept the query mentions."""
    lowered = query.lower()
    for concept, related in QUERY_EXPANSIONS.items():
        if concept in lowered:
            return f"{query} {related}"
    return query
