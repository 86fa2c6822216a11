"""
Format parsers, one per source family.

- rss: generic RSS/Atom feeds
- partner-xml: partner XML exports
- html-indeed, html-jooble, html-linkedin: job board search pages
- html-generic: selectors configured on the source
"""

from .base import CandidateSelectors, FormatParser, ParseResult
from .registry import ParserRegistry, UnknownFamilyError, get_parser_registry

__all__ = [
    'CandidateSelectors',
    'FormatParser',
    'ParseResult',
    'ParserRegistry',
    'UnknownFamilyError',
    'get_parser_registry',
]
