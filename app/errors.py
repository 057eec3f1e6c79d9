"""
Failure taxonomy for feed ingestion.

Parsers raise these internally; at the component boundary they are turned into
plain error strings carried next to the (possibly empty) result.
"""


class FeedError(Exception):
    """Base class for feed ingestion failures"""
    pass


class FetchFailure(FeedError):
    """Network or HTTP-status failure while fetching a feed (fatal for the call)"""
    pass


class FormatFailure(FeedError):
    """Feed is missing its required header or root element (fatal for the call)"""
    pass


class EntryFailure(FeedError):
    """One malformed channel or program entry; the rest of the batch continues"""
    pass


class TimeParseFailure(EntryFailure, ValueError):
    """Unparseable guide timestamp on a single program"""
    pass


__all__ = ["FeedError", "FetchFailure", "FormatFailure", "EntryFailure", "TimeParseFailure"]
