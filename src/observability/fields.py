"""Core field names of every structured log line.

Correlation fields are declared on ``LogContext`` in ``context.py``.
"""

TIMESTAMP = "timestamp"
LEVEL = "level"
LOGGER = "logger"
MESSAGE = "message"
EXCEPTION = "exception"
