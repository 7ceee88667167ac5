# Copyright 2026 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# SPDX-License-Identifier: Apache-2.0

"""Structured logging for cratekit.

Events are snake_case names with keyword context and go to stderr, so
stdout stays clean for ``cratekit check-workspace --json | jq``::

    configure_logging(verbose=..., quiet=..., json_log=...)
        │
        ▼
    contextvars (command=...) ─► level ─► logger name ─► timestamp
        ─► redact secrets ─► ConsoleRenderer | JSONRenderer ─► stderr

Registry tokens, docker passwords and blob-store keys travel through
the same code paths that log their neighbours; any event key naming a
credential is masked before rendering.

Usage::

    from cratekit.logging import configure_logging, get_logger

    configure_logging(verbose=True)
    bind_command('tests')
    log = get_logger(__name__)
    log.info('workspace_discovered', path='crates/core', members=3)
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Callable, MutableMapping
from typing import Any

import structlog

# Levels accepted by the script runner's live logging.
LOG_LEVELS: dict[str, int] = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warning': logging.WARNING,
    'error': logging.ERROR,
}

SECRET_KEYS: frozenset[str] = frozenset({
    'token',
    'password',
    'private_key',
    'access_key',
    'secret_access_key',
    'authorization',
    'identity_token',
})

REDACTED = '***'


def _root_level(*, verbose: bool, quiet: bool) -> int:
    # quiet wins over verbose
    if quiet:
        return logging.WARNING
    return logging.DEBUG if verbose else logging.INFO


def redact_secrets(
    _logger: Any,  # noqa: ANN401 - structlog processor signature
    _method: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Mask the value of every key naming a credential."""
    for key in event_dict.keys() & SECRET_KEYS:
        if event_dict[key]:
            event_dict[key] = REDACTED
    return event_dict


def _use_colors() -> bool:
    return sys.stderr.isatty() and not os.environ.get('NO_COLOR')


def configure_logging(
    *,
    verbose: bool = False,
    quiet: bool = False,
    json_log: bool = False,
) -> None:
    """Configure structlog over the stdlib root logger.

    Safe to call more than once; the last call wins.

    Args:
        verbose: Enable debug-level output.
        quiet: Only warnings and errors; takes precedence over ``verbose``.
        json_log: One JSON object per line instead of console output.
    """
    logging.basicConfig(
        format='%(message)s',
        stream=sys.stderr,
        level=_root_level(verbose=verbose, quiet=quiet),
        force=True,
    )

    renderer: structlog.types.Processor
    if json_log:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=_use_colors())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt='iso'),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            redact_secrets,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    )
    for handler in logging.root.handlers:
        handler.setFormatter(formatter)


def bind_command(command: str) -> None:
    """Tag every following event with the running subcommand."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(command=command)


def get_logger(name: str = 'cratekit') -> structlog.stdlib.BoundLogger:
    """Return a bound structlog logger named ``name``."""
    return structlog.get_logger(name)


def level_method(logger: structlog.stdlib.BoundLogger, level: str) -> Callable[..., Any]:
    """Return the logger method for a level name such as ``'debug'``.

    Raises:
        ValueError: If ``level`` is not one of :data:`LOG_LEVELS`.
    """
    if level not in LOG_LEVELS:
        msg = f'Unknown log level {level!r}; expected one of {sorted(LOG_LEVELS)}'
        raise ValueError(msg)
    return getattr(logger, level)


__all__ = [
    'LOG_LEVELS',
    'REDACTED',
    'SECRET_KEYS',
    'bind_command',
    'configure_logging',
    'get_logger',
    'level_method',
    'redact_secrets',
]
