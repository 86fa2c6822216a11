"""
Parser registry: dispatch a source to the parser for its family.
"""
import logging
from typing import Dict, List, Optional

from jobingest.core.errors import ParseError
from jobingest.models import SourceDescriptor
from .base import FormatParser, ParseResult

logger = logging.getLogger(__name__)

# Global registry instance
_registry: Optional['ParserRegistry'] = None


class UnknownFamilyError(ParseError):
    """No parser is registered for the source family"""

    kind = "unknown-family"


class ParserRegistry:
    """Registry of format parsers keyed by source family"""

    def __init__(self):
        self._parsers: List[FormatParser] = []
        self._parsers_by_family: Dict[str, FormatParser] = {}

    def register(self, parser: FormatParser):
        if parser.family in self._parsers_by_family:
            logger.warning(f"[parsers] Parser {parser.family} already registered, replacing")
            self._parsers = [p for p in self._parsers if p.family != parser.family]

        self._parsers_by_family[parser.family] = parser
        self._parsers.append(parser)

        # Sort by priority (higher first)
        self._parsers.sort(key=lambda p: p.priority, reverse=True)
        logger.debug(f"[parsers] Registered parser: {parser.family} (priority={parser.priority})")

    def get_parser(self, family: str) -> Optional[FormatParser]:
        return self._parsers_by_family.get(family)

    @property
    def families(self) -> List[str]:
        return [p.family for p in self._parsers]

    def resolve(self, source: SourceDescriptor) -> FormatParser:
        """
        Parser for a source: its declared family, else the highest-priority
        parser that accepts its kind and URL.
        """
        if source.family:
            parser = self._parsers_by_family.get(source.family)
            if parser is None:
                raise UnknownFamilyError(f"No parser registered for family '{source.family}'")
            return parser

        for parser in self._parsers:
            if parser.can_handle(source):
                logger.debug(f"[parsers] Selected {parser.family} for {source.url[:80]}")
                return parser
        raise UnknownFamilyError(f"No parser accepts source {source.id} ({source.kind.value}, {source.url})")

    def parse(self, content: str, source: SourceDescriptor) -> ParseResult:
        return self.resolve(source).parse(content, source)


def get_parser_registry() -> ParserRegistry:
    """Get the global registry with built-in parsers registered"""
    global _registry
    if _registry is None:
        from .generic import GenericParser
        from .indeed import IndeedParser
        from .jooble import JoobleParser
        from .linkedin import LinkedInParser
        from .partner_xml import PartnerXMLParser
        from .rss import RSSParser

        _registry = ParserRegistry()
        for parser in (
            RSSParser(),
            PartnerXMLParser(),
            IndeedParser(),
            JoobleParser(),
            LinkedInParser(),
            GenericParser(),
        ):
            _registry.register(parser)
    return _registry
