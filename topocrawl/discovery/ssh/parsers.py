"""
TopoCrawl Neighbor Parser - Prioritized multi-method output parsing.

Path: topocrawl/discovery/ssh/parsers.py

Templates are either TextFSM (STRUCTURED) or named-group regexes (REGEX).
All STRUCTURED templates run before any REGEX template; within a method,
lower priority runs first. The first template that yields records wins,
so a partial early match hides later templates. Set first_match_wins=False
to merge results from every template instead.
"""

import io
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import textfsm

from ...exceptions import ParseError, TemplateLoadError

logger = logging.getLogger(__name__)


# Command substring (case-insensitive) -> template file
COMMAND_TEMPLATE_MAP: Dict[str, str] = {
    'show cdp neighbors detail': 'cisco_ios_show_cdp_neighbors_detail.textfsm',
    'show lldp neighbors detail': 'cisco_ios_show_lldp_neighbors_detail.textfsm',
    'show lldp neighbor detail': 'arista_eos_show_lldp_neighbors_detail.textfsm',
}

HOSTNAME_FALLBACK_PATTERN = r'hostname\s+(?P<hostname>\S+)'


class ParseMethod(str, Enum):
    """Template kinds, in registry precedence order."""
    STRUCTURED = "textfsm"
    REGEX = "regex"


@dataclass(frozen=True)
class ParseTemplate:
    """A named, prioritized extraction template."""
    method: ParseMethod
    pattern: str
    priority: int = 0
    name: str = ""

    def __post_init__(self):
        if not self.name:
            object.__setattr__(self, 'name', f"{self.method.value}_{self.priority}")

    @property
    def sort_key(self) -> Tuple[int, int]:
        """STRUCTURED before REGEX, then ascending priority."""
        return (0 if self.method == ParseMethod.STRUCTURED else 1, self.priority)


@dataclass
class ParseResult:
    """Result of parsing CLI output."""
    success: bool
    template_name: Optional[str] = None
    records: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def record_count(self) -> int:
        return len(self.records)


class OutputCleaner:
    """Clean raw terminal output before any template sees it."""

    LINE_ENDINGS = re.compile(r'\r\n|\r')
    CONTROL_CHARS = re.compile(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]')
    ANSI_SEQUENCES = re.compile(r'\x1b\[[0-9;]*[mK]')
    VALUE_CONTROL_CHARS = re.compile(r'[\x00-\x1f\x7f-\x9f]')

    # Patterns to skip at start of output
    PREAMBLE_PATTERNS = [
        r'^terminal\s+(length|width|pager)',
        r'^pagination\s+disabled',
        r'^screen-length\s+disable',
        r'^\s*$',
    ]

    # Command echo pattern
    COMMAND_ECHO_PATTERN = r'^([\w\-\.]+[\#\>\$\)]\s*)?(show|display|get)\s+'

    # Trailing prompt pattern
    TRAILING_PROMPT_PATTERN = r'^[\w\-\.]+[\#\>\$\)]\s*$'

    @classmethod
    def clean_text(cls, text: str) -> str:
        """Normalize line endings and strip escape/control characters."""
        if not text:
            return ""
        text = cls.ANSI_SEQUENCES.sub('', text)
        text = cls.LINE_ENDINGS.sub('\n', text)
        return cls.CONTROL_CHARS.sub('', text)

    @classmethod
    def clean_value(cls, value: Any) -> Any:
        """Strip control characters and whitespace from parsed values."""
        if isinstance(value, str):
            return cls.VALUE_CONTROL_CHARS.sub('', value).strip()
        if isinstance(value, list):
            return [cls.clean_value(v) for v in value]
        return value

    @classmethod
    def clean(cls, raw_output: str) -> str:
        """
        Full cleanup for parsing.

        Removes:
        - Escape sequences and control characters
        - Preamble lines (terminal length, pagination messages)
        - Command echo (hostname#show command)
        - Trailing prompts
        """
        lines = cls.clean_text(raw_output).split('\n')
        cleaned_lines = []
        found_output_start = False

        for line in lines:
            line_stripped = line.strip()

            if not found_output_start:
                is_preamble = any(
                    re.match(p, line_stripped, re.IGNORECASE)
                    for p in cls.PREAMBLE_PATTERNS
                )
                if is_preamble:
                    continue

                found_output_start = True
                if re.match(cls.COMMAND_ECHO_PATTERN, line_stripped, re.IGNORECASE):
                    continue

            if re.match(cls.TRAILING_PROMPT_PATTERN, line_stripped):
                continue

            cleaned_lines.append(line)

        while cleaned_lines and not cleaned_lines[-1].strip():
            cleaned_lines.pop()

        return '\n'.join(cleaned_lines)


def _python_group_syntax(pattern: str) -> str:
    """Accept (?<name>...) named groups by rewriting to (?P<name>...)."""
    return re.sub(r'\(\?<(?=[A-Za-z_])', '(?P<', pattern)


class NeighborParser:
    """
    Template registry plus parsing strategy.

    Example:
        parser = NeighborParser()
        parser.load_templates_from_directory(commands, template_dir)
        records = parser.parse(raw_cdp_output)
    """

    def __init__(self, first_match_wins: bool = True,
                 include_hostname_fallback: bool = True):
        self.first_match_wins = first_match_wins
        self._templates: List[ParseTemplate] = []
        if include_hostname_fallback:
            self.add_template(ParseMethod.REGEX, HOSTNAME_FALLBACK_PATTERN,
                              priority=100, name='hostname_from_config')

    @property
    def templates(self) -> Tuple[ParseTemplate, ...]:
        """Templates in evaluation order."""
        return tuple(self._templates)

    def add_template(self, method: Union[ParseMethod, str], pattern: str,
                     priority: int = 0, name: Optional[str] = None) -> ParseTemplate:
        """Register a template and restore registry order."""
        template = ParseTemplate(ParseMethod(method), pattern, priority, name or "")
        self._templates.append(template)
        # Stable: equal keys keep insertion order
        self._templates.sort(key=lambda t: t.sort_key)
        logger.debug(f"Registered template {template.name} ({template.method.value}, "
                     f"priority {template.priority})")
        return template

    def load_templates_from_directory(self, commands: Iterable[str],
                                      template_dir: Union[str, Path]) -> List[ParseTemplate]:
        """
        Register the STRUCTURED template for each command, if present.

        Missing files and directories are logged, never raised.
        """
        template_dir = Path(template_dir)
        if not template_dir.is_dir():
            logger.error(f"Template directory not found: {template_dir}")
            return []

        loaded = []
        seen = set()
        for command in commands:
            filename = self.template_file_for(command)
            if filename is None:
                logger.debug(f"No template mapping for command: {command}")
                continue
            if filename in seen:
                continue
            seen.add(filename)

            try:
                content = self._read_template(template_dir / filename)
            except TemplateLoadError as e:
                logger.warning(str(e))
                continue

            loaded.append(self.add_template(
                ParseMethod.STRUCTURED, content, priority=0, name=Path(filename).stem
            ))
            logger.info(f"Loaded template {filename} for '{command}'")

        return loaded

    @staticmethod
    def template_file_for(command: str) -> Optional[str]:
        lowered = command.lower()
        for key, filename in COMMAND_TEMPLATE_MAP.items():
            if key in lowered:
                return filename
        return None

    @staticmethod
    def _read_template(path: Path) -> str:
        if not path.is_file():
            raise TemplateLoadError(f"Template file not found: {path}")
        try:
            return path.read_text(encoding='utf-8')
        except (OSError, UnicodeDecodeError) as e:
            raise TemplateLoadError(f"Cannot read template {path}: {e}") from e

    # =========================================================================
    # Methods
    # =========================================================================

    def parse_structured(self, text: str, template: str) -> List[Dict[str, Any]]:
        """
        Run a TextFSM template over cleaned text.

        Raises:
            ParseError: malformed template or state machine error
        """
        try:
            fsm = textfsm.TextFSM(io.StringIO(template))
            rows = fsm.ParseTextToDicts(text)
        except (textfsm.TextFSMTemplateError, textfsm.TextFSMError) as e:
            raise ParseError(f"TextFSM failed: {e}") from e

        return [
            {key: OutputCleaner.clean_value(value) for key, value in row.items()}
            for row in rows
        ]

    def parse_regex(self, text: str, pattern: str) -> List[Dict[str, Any]]:
        """
        Collect named groups from every match (multiline, case-insensitive).

        Raises:
            ParseError: invalid regex
        """
        try:
            compiled = re.compile(_python_group_syntax(pattern), re.IGNORECASE | re.MULTILINE)
        except re.error as e:
            raise ParseError(f"Invalid regex: {e}") from e

        records = []
        for match in compiled.finditer(text):
            groups = {
                key: OutputCleaner.clean_value(value)
                for key, value in match.groupdict().items()
                if value is not None
            }
            if groups:
                records.append(groups)
        return records

    def _apply(self, text: str, template: ParseTemplate) -> List[Dict[str, Any]]:
        if template.method == ParseMethod.STRUCTURED:
            return self.parse_structured(text, template.pattern)
        return self.parse_regex(text, template.pattern)

    # =========================================================================
    # Entry points
    # =========================================================================

    def parse_detailed(self, text: str) -> ParseResult:
        """Parse and report which template produced the records."""
        if not text or not text.strip():
            return ParseResult(success=False, error="Empty output")

        cleaned = OutputCleaner.clean(text)
        merged: List[Dict[str, Any]] = []
        matched: List[str] = []

        for template in self._templates:
            try:
                records = self._apply(cleaned, template)
            except ParseError as e:
                logger.warning(f"Template {template.name} failed: {e}")
                continue

            if not records:
                continue

            logger.debug(f"Template {template.name} matched {len(records)} records")
            if self.first_match_wins:
                return ParseResult(success=True, template_name=template.name, records=records)
            merged.extend(records)
            matched.append(template.name)

        if merged:
            return ParseResult(success=True, template_name=",".join(matched), records=merged)
        return ParseResult(success=False, error="No template matched")

    def parse(self, text: str) -> List[Dict[str, Any]]:
        """Records from the winning template, or [] when nothing matches."""
        return self.parse_detailed(text).records
