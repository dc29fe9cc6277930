"""
HUMAN logging level -- Readable catalog traceability.

Custom level between INFO (20) and WARNING (30).
Does not indicate severity -- it marks the high-level steps a user
wants to follow (cache hit, refresh, quota wait) without technical noise.

Hierarchy:
    debug  (10) -> HTTP requests, headers, timing
    info   (20) -> System operations (config loaded, client created)
    human  (25) -> * What the catalog does: refresh, fallback, quota wait
    warn   (30) -> Non-fatal problems
    error  (40) -> Errors
"""

import logging

import structlog

HUMAN = 25
logging.addLevelName(HUMAN, "HUMAN")


def _human_method(self, message, *args, **kwargs):
    if self.isEnabledFor(HUMAN):
        self._log(HUMAN, message, args, **kwargs)


# Injected so stdlib loggers accept .human() like any other level
logging.Logger.human = _human_method

# Registered in structlog to avoid KeyError: 25 when filtering by level
try:
    structlog.stdlib.LEVEL_TO_NAME[HUMAN] = "human"
except (AttributeError, KeyError):
    pass
