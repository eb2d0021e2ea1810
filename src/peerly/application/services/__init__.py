from peerly.application.services.field_merger import FieldMerger
from peerly.application.services.keyword_search_service import KeywordSearchService
from peerly.application.services.metadata_fetcher import MetadataFetcher, SourceOutcome
from peerly.application.services.paper_resolver import PaperResolver, persist_record
from peerly.application.services.query_parser import parse_search_query
from peerly.application.services.rate_limiter import RateLimiter

__all__ = [
    "FieldMerger",
    "KeywordSearchService",
    "MetadataFetcher",
    "SourceOutcome",
    "PaperResolver",
    "persist_record",
    "parse_search_query",
    "RateLimiter",
]
