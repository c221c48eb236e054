from __future__ import annotations

import os
from dataclasses import dataclass, asdict
from typing import List, Optional

from .errors import BadRequest, NotFound
from .paths import PathResolver, join_logical
from .logutil import get_logger

logger = get_logger("search")


@dataclass(frozen=True)
class SearchHit:
    path: str
    name: str
    is_dir: bool
    score: float

    def to_dict(self):
        return asdict(self)


def score_name(name: str, query: str) -> float:
    """
    Both arguments lowercased already. Exact match 1.0, prefix 0.9, else a
    blend of how much of the name the query covers and how early it sits.
    """
    if name == query:
        return 1.0
    if name.startswith(query):
        return 0.9
    pos = name.find(query)
    if pos < 0:
        pos = len(name)
    return 0.5 * (len(query) / len(name)) + 0.3 * (1.0 - pos / len(name))


class SearchWalker:
    def __init__(self, resolver: PathResolver, max_results: Optional[int] = None):
        self.resolver = resolver
        self.max_results = max_results or resolver.config.max_search_results

    def search(self, query: str, logical_path: str | None = "") -> List[SearchHit]:
        q = (query or "").strip().lower()
        if not q:
            raise BadRequest("Search query must not be empty")
        base_rel, base = self.resolver.resolve_pair(logical_path)
        if not os.path.exists(base):
            raise NotFound(base_rel or "/", what="Search path")
        if not os.path.isdir(base):
            raise BadRequest(f"Search path is not a directory: {base_rel}", path=base_rel)

        allow_links = self.resolver.config.allow_symlinks
        hits: List[SearchHit] = []
        for dirpath, dirnames, filenames in os.walk(base, followlinks=False):
            dir_rel = self.resolver.to_logical(dirpath)
            if not allow_links:
                dirnames[:] = [d for d in dirnames if not os.path.islink(os.path.join(dirpath, d))]
            dirnames.sort()
            for names, is_dir in ((dirnames, True), (filenames, False)):
                for name in names:
                    lowered = name.lower()
                    if q not in lowered:
                        continue
                    if not allow_links and not is_dir and os.path.islink(os.path.join(dirpath, name)):
                        continue
                    hits.append(SearchHit(join_logical(dir_rel, name), name, is_dir, score_name(lowered, q)))

        hits.sort(key=lambda h: (-h.score, h.path))
        logger.debug(f"search: {q!r} under {base_rel or '/'} -> {len(hits)} hits")
        return hits[: self.max_results]
