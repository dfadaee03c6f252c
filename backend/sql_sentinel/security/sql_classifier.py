"""
SQL Classifier - maps raw SQL text to an operation category

Pattern matching only, no parsing. Every keyword test uses word boundaries
so identifiers such as created_date or updated_by never match CREATE or
UPDATE.
"""
from dataclasses import dataclass
from typing import FrozenSet, List, Optional
import re

from sql_sentinel.models import Operation


# Leading keyword -> primary operation, tried in order
STATEMENT_PATTERNS = [
    (Operation.SELECT, re.compile(r'^\s*(SELECT|WITH)\b', re.IGNORECASE)),
    (Operation.INSERT, re.compile(r'^\s*(INSERT|INTO)\b', re.IGNORECASE)),
    (Operation.UPDATE, re.compile(r'^\s*UPDATE\b', re.IGNORECASE)),
    (Operation.DELETE, re.compile(r'^\s*DELETE\b', re.IGNORECASE)),
    (Operation.DDL, re.compile(r'^\s*(CREATE|DROP|ALTER|TRUNCATE|GRANT|REVOKE|RENAME)\b', re.IGNORECASE)),
]

JOIN_PATTERN = re.compile(r'\bJOIN\b', re.IGNORECASE)

# Best-effort: WITH somewhere before an AS. Over-matches e.g. "WITH (NOLOCK) ... AS alias".
CTE_PATTERN = re.compile(r'\bWITH\b.*\bAS\b', re.IGNORECASE | re.DOTALL)

# Keywords refused anywhere in the text for non-admin roles
FORBIDDEN_SQL_KEYWORDS = (
    'DROP', 'TRUNCATE', 'ALTER', 'DELETE', 'UPDATE', 'INSERT', 'REPLACE',
    'GRANT', 'REVOKE', 'CREATE', 'RENAME', 'EXEC', 'EXECUTE', 'DATABASE', 'SCHEMA'
)

_FORBIDDEN_PATTERNS = [
    (keyword, re.compile(rf'\b{keyword}\b', re.IGNORECASE))
    for keyword in FORBIDDEN_SQL_KEYWORDS
]

IDENTIFIER_PATTERN = re.compile(r'\b\w+\b')

# Identifier (optionally schema-qualified or quoted) after a table-introducing keyword
TABLE_REFERENCE_PATTERN = re.compile(
    r'\b(?:FROM|JOIN|INTO|UPDATE)\s+((?:[`"\[]?\w+[`"\]]?\s*\.\s*)?[`"\[]?\w+[`"\]]?)',
    re.IGNORECASE
)

# Comma-separated FROM lists: FROM a, b x, c
FROM_LIST_PATTERN = re.compile(
    r'\bFROM\s+([\w."`\[\]]+(?:\s+(?:AS\s+)?\w+)?(?:\s*,\s*[\w."`\[\]]+(?:\s+(?:AS\s+)?\w+)?)+)',
    re.IGNORECASE
)

CTE_NAME_PATTERN = re.compile(r'(?:\bWITH\b|,)\s*(?:RECURSIVE\s+)?(\w+)\s*(?:\([^)]*\)\s*)?AS\s*\(', re.IGNORECASE)

# Functions whose argument syntax contains FROM, e.g. EXTRACT(YEAR FROM order_date)
FROM_FUNCTIONS = frozenset({'extract', 'substring', 'substr', 'trim', 'position', 'overlay'})

# Words that can follow FROM/UPDATE without naming a user table
NON_TABLE_WORDS = frozenset({'set', 'select', 'lateral', 'only', 'dual'})

# Limiting clauses of the outermost query, matched after nested parentheses are removed
ROW_LIMIT_PATTERNS = [
    re.compile(r'\bLIMIT\s+\d+', re.IGNORECASE),
    re.compile(r'\bROWNUM\s*(<=|<|=)\s*\d+', re.IGNORECASE),
    re.compile(r'\bFETCH\s+(FIRST|NEXT)\b', re.IGNORECASE),
]

TOP_PATTERN = re.compile(r'^\s*SELECT\s+(DISTINCT\s+)?TOP\s+\(?\d+', re.IGNORECASE)

# Quoted strings, quoted identifiers and comments
LITERAL_OR_COMMENT_PATTERN = re.compile(
    r"'(?:[^']|'')*'|\"(?:[^\"]|\"\")*\"|--[^\n]*|/\*.*?\*/",
    re.DOTALL
)


@dataclass(frozen=True)
class Classification:
    """Primary operation plus independently detected modifiers."""
    operation: Operation
    uses_join: bool = False
    uses_cte: bool = False

    @property
    def modifiers(self) -> FrozenSet[Operation]:
        found = set()
        if self.uses_join:
            found.add(Operation.JOIN)
        if self.uses_cte:
            found.add(Operation.CTE)
        return frozenset(found)


def classify_statement(sql: str) -> Operation:
    """Determine the primary operation from the leading keyword."""
    for operation, pattern in STATEMENT_PATTERNS:
        if pattern.match(sql):
            return operation
    return Operation.UNKNOWN


def classify(sql: str) -> Classification:
    """Classify SQL text into one operation and its JOIN/CTE modifiers."""
    return Classification(
        operation=classify_statement(sql),
        uses_join=bool(JOIN_PATTERN.search(sql)),
        uses_cte=bool(CTE_PATTERN.search(sql)),
    )


def find_forbidden_keyword(sql: str) -> Optional[str]:
    """Return the first forbidden keyword present as a whole word, if any."""
    for keyword, pattern in _FORBIDDEN_PATTERNS:
        if pattern.search(sql):
            return keyword
    return None


def split_statements(sql: str) -> List[str]:
    """Split on ';' and drop empty segments."""
    return [part.strip() for part in sql.split(';') if part.strip()]


def extract_identifiers(sql: str) -> List[str]:
    """All word tokens, lowercased, in order of appearance."""
    return [token.lower() for token in IDENTIFIER_PATTERN.findall(sql)]


def _bare_name(reference: str) -> str:
    """Strip quoting and any schema prefix from a table reference."""
    name = re.split(r'\s*\.\s*', reference.strip())[-1]
    return name.strip('`"[]').lower()


def extract_cte_names(sql: str) -> FrozenSet[str]:
    """Names defined by WITH name AS (...) clauses."""
    if not re.match(r'^\s*WITH\b', sql, re.IGNORECASE):
        return frozenset()
    return frozenset(name.lower() for name in CTE_NAME_PATTERN.findall(sql))


def _inside_from_function(sql: str, position: int) -> bool:
    """True when position sits inside an open EXTRACT(...)-style call."""
    depth = 0
    for index in range(position - 1, -1, -1):
        char = sql[index]
        if char == ')':
            depth += 1
        elif char == '(':
            if depth == 0:
                preceding = re.search(r'(\w+)\s*$', sql[:index])
                return bool(preceding) and preceding.group(1).lower() in FROM_FUNCTIONS
            depth -= 1
    return False


def extract_table_references(sql: str) -> List[str]:
    """
    Table names following FROM, JOIN, INTO and UPDATE, in order, lowercased.

    CTE names, subquery openings and the FROM inside EXTRACT/SUBSTRING/TRIM
    calls are not reported. Heuristic only.
    """
    ctes = extract_cte_names(sql)
    found = []

    def add(reference: str) -> None:
        name = _bare_name(reference)
        if not name or name.isdigit() or name in NON_TABLE_WORDS:
            return
        if name not in ctes and name not in found:
            found.append(name)

    for match in TABLE_REFERENCE_PATTERN.finditer(sql):
        if _inside_from_function(sql, match.start()):
            continue
        add(match.group(1))

    for match in FROM_LIST_PATTERN.finditer(sql):
        for item in match.group(1).split(','):
            add(item.strip().split()[0])

    return found


def strip_literals_and_comments(sql: str) -> str:
    """Blank out quoted text and comments so their contents never match a keyword."""
    return LITERAL_OR_COMMENT_PATTERN.sub(' ', sql)


def outer_query_text(sql: str) -> str:
    """The SQL with every parenthesized section removed."""
    depth = 0
    kept = []
    for char in sql:
        if char == '(':
            depth += 1
        elif char == ')':
            depth = max(0, depth - 1)
        elif depth == 0:
            kept.append(char)
    return ''.join(kept)


def has_row_limit(sql: str) -> bool:
    """
    Check whether the outermost query already limits its rows.

    LIMIT, ROWNUM comparisons and FETCH FIRST/NEXT count only outside
    parentheses. Quoted text and comments are ignored.
    """
    text = strip_literals_and_comments(sql)
    if TOP_PATTERN.match(text):
        return True
    outer = outer_query_text(text)
    return any(pattern.search(outer) for pattern in ROW_LIMIT_PATTERNS)
