"""fakettp rule matching.

Public API:
    RequestInfo: the request fields a rule can inspect
    PatternCache: per-dispatcher cache of compiled route patterns
    matches: does one rule apply to one request
    first_match: first applicable rule in declared order
"""
from fakettp.rules.matcher import PatternCache, RequestInfo, first_match, matches

__all__ = ["PatternCache", "RequestInfo", "first_match", "matches"]
