"""
Placeholder scanning and secret injection for configuration text.

Configuration files (Docker Compose, .env) reference vault secrets as
``${NAME}``. Text is first parsed into literal and placeholder segments, then
rendered against a resolver. Substitution is a plain string replacement; the
caller is responsible for escaping values for the target format (see
``escape_value``).

Rendered text is handed back to the caller and never written anywhere by
this module.
"""

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

NAME_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

_OPEN = "${"
_CLOSE = "}"

Resolver = Callable[[str], str | None] | Mapping[str, str]


@dataclass(frozen=True)
class Literal:
    text: str


@dataclass(frozen=True)
class Placeholder:
    name: str

    @property
    def raw(self) -> str:
        return f"{_OPEN}{self.name}{_CLOSE}"


Segment = Literal | Placeholder


@dataclass
class InjectionReport:
    """Result of rendering configuration text against a resolver."""

    original_text: str
    rendered_text: str
    placeholders_found: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.missing

    def __repr__(self) -> str:
        # rendered_text holds resolved secrets
        return (
            f"InjectionReport(placeholders_found={self.placeholders_found!r}, "
            f"missing={self.missing!r})"
        )


def parse(text: str) -> list[Segment]:
    """Split text into literal and placeholder segments.

    A ``${`` without a closing brace, or whose contents are not a valid name,
    is kept as literal text. For ``${${A}}`` the inner ``${A}`` is the
    placeholder and the outer characters stay literal.
    """
    segments: list[Segment] = []
    literal_start = 0
    pos = text.find(_OPEN)
    while pos != -1:
        end = text.find(_CLOSE, pos + len(_OPEN))
        if end == -1:
            break
        name = text[pos + len(_OPEN):end]
        if NAME_PATTERN.fullmatch(name):
            if pos > literal_start:
                segments.append(Literal(text[literal_start:pos]))
            segments.append(Placeholder(name))
            literal_start = end + len(_CLOSE)
            pos = text.find(_OPEN, literal_start)
        else:
            pos = text.find(_OPEN, pos + 1)
    if literal_start < len(text):
        segments.append(Literal(text[literal_start:]))
    return segments


def _unique_names(segments: list[Segment]) -> list[str]:
    # dict preserves first-occurrence order
    names = dict.fromkeys(s.name for s in segments if isinstance(s, Placeholder))
    return list(names)


def scan(text: str) -> list[str]:
    """Return distinct placeholder names in first-occurrence order."""
    return _unique_names(parse(text))


def has_placeholders(text: str) -> bool:
    return any(isinstance(s, Placeholder) for s in parse(text))


def _as_callable(resolver: Resolver) -> Callable[[str], str | None]:
    if isinstance(resolver, Mapping):
        return resolver.get
    return resolver


def _render(text: str, resolver: Resolver) -> tuple[str, list[str], list[str]]:
    segments = parse(text)
    names = _unique_names(segments)
    lookup = _as_callable(resolver)

    resolved: dict[str, str] = {}
    missing: list[str] = []
    for name in names:
        value = lookup(name)
        if value is None:
            missing.append(name)
        else:
            resolved[name] = value

    parts = []
    for segment in segments:
        if isinstance(segment, Literal):
            parts.append(segment.text)
        elif segment.name in resolved:
            parts.append(resolved[segment.name])
        else:
            parts.append(segment.raw)
    return "".join(parts), names, missing


def inject(text: str, resolver: Resolver) -> tuple[str, list[str]]:
    """Substitute resolvable placeholders.

    Each distinct name is resolved once. Names the resolver cannot resolve
    (returns None or is absent from the mapping) are left verbatim.

    Returns:
        Tuple of (rendered_text, missing_names).
    """
    rendered, _, missing = _render(text, resolver)
    return rendered, missing


def preview(text: str, resolver: Resolver) -> InjectionReport:
    """Render text and report which placeholders were found and missing."""
    rendered, names, missing = _render(text, resolver)
    return InjectionReport(
        original_text=text,
        rendered_text=rendered,
        placeholders_found=names,
        missing=missing,
    )


def create_template_from_text(text: str, mappings: Mapping[str, str]) -> str:
    """Replace literal secret values in text with ``${KEY}`` placeholders.

    Longer values are replaced first so a value that contains another is not
    split. Empty values are ignored.
    """
    ordered = sorted(
        ((key, value) for key, value in mappings.items() if value),
        key=lambda item: len(item[1]),
        reverse=True,
    )
    for key, value in ordered:
        text = text.replace(value, Placeholder(key).raw)
    return text


_YAML_SPECIAL = re.compile(r"[\"\s#:{}\[\],&*!|>'%@`]")


def escape_value(value: str) -> str:
    """Double-quote a value that would otherwise break YAML parsing."""
    if _YAML_SPECIAL.search(value):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return value


def to_env_format(secrets: Mapping[str, str]) -> str:
    """Render secrets as ``KEY=value`` lines for a .env file."""
    return "\n".join(f"{key}={escape_value(value)}" for key, value in secrets.items())


_ENV_LINE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)\s*=\s*(.*)$")


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1]
    return value


def parse_env_format(content: str) -> dict[str, str]:
    """Parse ``KEY=value`` lines. Blank lines and ``#`` comments are skipped."""
    secrets: dict[str, str] = {}
    for line in content.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if stripped.startswith("export "):
            stripped = stripped[len("export "):].lstrip()
        match = _ENV_LINE.match(stripped)
        if match:
            secrets[match.group(1)] = _strip_quotes(match.group(2).strip())
    return secrets


@dataclass
class PotentialSecret:
    """A configuration line that looks like it embeds a credential."""

    key: str
    line: int


_ASSIGNMENT = re.compile(r"^\s*-?\s*([A-Za-z_][A-Za-z0-9_]*)\s*[:=]\s*(.+)$")
_SENSITIVE_NAME = re.compile(
    r"password|passwd|secret|token|api_?key|private_?key|access_?key|"
    r"credential|auth|database_url",
    re.IGNORECASE,
)
_COMPLEX_VALUE = re.compile(r"^[A-Za-z0-9+/=_\-.]{20,}$")


def find_potential_secrets(text: str) -> list[PotentialSecret]:
    """Flag ``KEY: value`` / ``KEY=value`` lines that look like hardcoded secrets.

    A line is flagged when the key name looks sensitive, or the value is a
    long token-like string. Values that are already placeholders are skipped.
    """
    found: list[PotentialSecret] = []
    for number, line in enumerate(text.splitlines(), start=1):
        match = _ASSIGNMENT.match(line)
        if not match:
            continue
        key, value = match.group(1), _strip_quotes(match.group(2).strip())
        if not value or has_placeholders(value):
            continue
        if _SENSITIVE_NAME.search(key) or _COMPLEX_VALUE.match(value):
            found.append(PotentialSecret(key=key, line=number))
    return found
