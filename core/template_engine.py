# core/template_engine.py
"""
Placeholder template engine for notification emails

Templates use ``{{name}}`` tokens. Substitution is exact, case-sensitive and
global. Declared variables without a value render as a fixed placeholder;
tokens that are neither supplied nor declared stay in the output verbatim.
"""

import re
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set
from dataclasses import dataclass, field

from bs4 import BeautifulSoup

# Configure logging
logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r'\{\{(\w+)\}\}')
LINE_BREAK_PATTERN = re.compile(r'\r\n|\r|\n')

MISSING_VALUE_PLACEHOLDER = 'not specified'
HTML_LINE_BREAK = '<br>'


@dataclass
class TemplateRenderResult:
    """Result of template rendering operation"""
    text: str
    variables_used: Set[str] = field(default_factory=set)
    variables_missing: Set[str] = field(default_factory=set)
    unresolved_tokens: Set[str] = field(default_factory=set)


class PlaceholderTemplateEngine:
    """
    Renders ``{{name}}`` placeholders from a mapping of values.

    A value of ``None`` counts as absent. Values are stringified, and a
    substituted value is never scanned for further tokens.
    """

    def __init__(self, missing_value: str = MISSING_VALUE_PLACEHOLDER):
        self.missing_value = missing_value

    def render(self,
               template_text: Optional[str],
               values: Optional[Mapping[str, Any]] = None,
               declared_variables: Optional[Iterable[str]] = None) -> TemplateRenderResult:
        values = values or {}
        declared = set(declared_variables or ())
        result = TemplateRenderResult(text='')

        def substitute(match: 're.Match') -> str:
            name = match.group(1)
            value = values.get(name)
            if value is not None:
                result.variables_used.add(name)
                return str(value)
            if name in declared or name in values:
                result.variables_missing.add(name)
                return self.missing_value
            result.unresolved_tokens.add(name)
            return match.group(0)

        result.text = PLACEHOLDER_PATTERN.sub(substitute, template_text or '')

        if result.unresolved_tokens:
            logger.debug(f"Unresolved template tokens left verbatim: {sorted(result.unresolved_tokens)}")

        return result


def extract_placeholders(template_text: Optional[str]) -> List[str]:
    """Placeholder names in order of first appearance"""
    seen: Dict[str, None] = {}
    for match in PLACEHOLDER_PATTERN.finditer(template_text or ''):
        seen.setdefault(match.group(1), None)
    return list(seen)


def text_to_html(body: Optional[str]) -> str:
    """
    Convert every line break to ``<br>``.

    The output holds no newline characters, so a second pass is a no-op.
    """
    return LINE_BREAK_PATTERN.sub(HTML_LINE_BREAK, body or '')


def html_to_text(html_content: Optional[str]) -> str:
    """
    Convert HTML to plain text for the text/plain alternative part
    """
    if not html_content:
        return ""

    soup = BeautifulSoup(html_content, 'html.parser')

    for br in soup.find_all('br'):
        br.replace_with('\n')

    for p in soup.find_all('p'):
        p.insert_after('\n\n')

    for link in soup.find_all('a', href=True):
        link_text = link.get_text()
        href = link['href']
        if href != link_text:
            link.replace_with(f"{link_text} ({href})")

    text = soup.get_text()
    text = re.sub(r'[ \t]+', ' ', text)
    text = re.sub(r'\n{3,}', '\n\n', text)
    return text.strip()
