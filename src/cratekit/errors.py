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

"""Structured error system for cratekit.

Every error has a unique ``CK-NAMED-KEY`` code, a human-readable message,
and an optional hint with a suggested fix. The code doubles as the kind
tag in structured (JSON) output; the message is the one-liner shown to
humans.

Key Concepts (ELI5)::

    ┌─────────────────────┬────────────────────────────────────────────────┐
    │ Concept             │ ELI5 Explanation                               │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ ErrorCode           │ A unique named ID like "CK-LOCKFILE-DRIFT"    │
    │                     │ for each error. Readable at a glance.         │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ ErrorInfo           │ A bundle of code + message + hint. Like an    │
    │                     │ error card with a fix suggestion stapled on.  │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ CrateKitError       │ An exception you can raise. Carries the       │
    │                     │ error card so renderers can display it.       │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ ERRORS catalog      │ Pre-built error cards for common mistakes.    │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ explain()           │ Looks up an error code and prints details.    │
    └─────────────────────┴────────────────────────────────────────────────┘

Code categories::

    CK-CONFIG-*       Configuration errors (tool and registry config)
    CK-WORKSPACE-*    Workspace discovery and manifest errors
    CK-GRAPH-*        Crate graph errors
    CK-VCS-*          Revision and diff errors
    CK-REGISTRY-*     Remote probe errors
    CK-PUBLISH-*      Publish errors
    CK-TEST-*         Test orchestration errors
    CK-LOCKFILE-*     Lockfile fixer errors
    CK-PATCH-*        Registry patcher errors
    CK-SERVICE-*      Service container errors

Usage::

    from cratekit.errors import CrateKitError, E

    raise CrateKitError(
        code=E.LOCKFILE_DRIFT,
        message='cargo update modified Cargo.lock in check mode',
        hint="Run 'cratekit fix-lock-files' and commit the result.",
    )
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from enum import Enum
from typing import TextIO

from rich.console import Console
from rich.markup import escape as rich_escape


class ErrorCode(str, Enum):
    """Enumeration of all cratekit diagnostic codes."""

    # Configuration
    CONFIG_NOT_FOUND = 'CK-CONFIG-NOT-FOUND'
    CONFIG_INVALID_KEY = 'CK-CONFIG-INVALID-KEY'
    CONFIG_INVALID_VALUE = 'CK-CONFIG-INVALID-VALUE'
    CONFIG_MISSING_REQUIRED = 'CK-CONFIG-MISSING-REQUIRED'

    # Workspace discovery
    WORKSPACE_NOT_FOUND = 'CK-WORKSPACE-NOT-FOUND'
    WORKSPACE_METADATA_FAILED = 'CK-WORKSPACE-METADATA-FAILED'
    WORKSPACE_METADATA_INVALID = 'CK-WORKSPACE-METADATA-INVALID'
    WORKSPACE_DUPLICATE_PACKAGE = 'CK-WORKSPACE-DUPLICATE-PACKAGE'
    WORKSPACE_PARSE_ERROR = 'CK-WORKSPACE-PARSE-ERROR'

    # Crate graph
    GRAPH_CYCLE_DETECTED = 'CK-GRAPH-CYCLE-DETECTED'
    GRAPH_UNKNOWN_PACKAGE = 'CK-GRAPH-UNKNOWN-PACKAGE'

    # VCS
    VCS_REVISION_NOT_FOUND = 'CK-VCS-REVISION-NOT-FOUND'
    VCS_COMMAND_FAILED = 'CK-VCS-COMMAND-FAILED'

    # Remote probes
    REGISTRY_NOT_CONFIGURED = 'CK-REGISTRY-NOT-CONFIGURED'
    REGISTRY_AUTH_FAILED = 'CK-REGISTRY-AUTH-FAILED'
    REGISTRY_ERROR = 'CK-REGISTRY-ERROR'

    # Publish
    PUBLISH_FAILED = 'CK-PUBLISH-FAILED'
    PUBLISH_MISSING_REPOSITORY = 'CK-PUBLISH-MISSING-REPOSITORY'

    # Tests
    TEST_FAILED = 'CK-TEST-FAILED'

    # Lockfile fixer
    LOCKFILE_DRIFT = 'CK-LOCKFILE-DRIFT'
    LOCKFILE_UPDATE_FAILED = 'CK-LOCKFILE-UPDATE-FAILED'

    # Registry patcher
    PATCH_CHECKSUM_NOT_FOUND = 'CK-PATCH-CHECKSUM-NOT-FOUND'
    PATCH_YANKED = 'CK-PATCH-YANKED'
    PATCH_INDEX_MISSING = 'CK-PATCH-INDEX-MISSING'
    PATCH_MANIFEST_INVALID = 'CK-PATCH-MANIFEST-INVALID'

    # Service containers
    SERVICE_START_FAILED = 'CK-SERVICE-START-FAILED'


# Convenience alias for shorter imports.
E = ErrorCode


@dataclass(frozen=True)
class ErrorInfo:
    """Metadata for a single error code.

    Attributes:
        code: The ``CK-NAMED-KEY`` error code.
        message: Human-readable description of what went wrong.
        hint: Optional suggestion for how to fix the error.
    """

    code: ErrorCode
    message: str
    hint: str = ''


class CrateKitError(Exception):
    """Base exception for all cratekit errors.

    Args:
        code: The error code from :class:`ErrorCode`.
        message: Human-readable description of what went wrong.
        hint: Optional suggestion for how to fix the error.
    """

    def __init__(self, code: ErrorCode, message: str, hint: str = '') -> None:
        """Initialize with an error code, message, and optional hint."""
        self.info = ErrorInfo(code=code, message=message, hint=hint)
        super().__init__(f'[{code.value}] {message}')

    @property
    def code(self) -> ErrorCode:
        """The error code."""
        return self.info.code

    @property
    def hint(self) -> str:
        """Suggestion for fixing this error, or empty string."""
        return self.info.hint

    def to_dict(self) -> dict[str, str]:
        """Structured form used in JSON output."""
        return {'kind': self.code.value, 'message': self.info.message, 'hint': self.hint}


class CrateKitWarning(UserWarning):
    """Base warning for all cratekit warnings.

    Same structure as :class:`CrateKitError` but emitted via
    :func:`warnings.warn` or collected in results instead of being raised.
    """

    def __init__(self, code: ErrorCode, message: str, hint: str = '') -> None:
        """Initialize with an error code, message, and optional hint."""
        self.info = ErrorInfo(code=code, message=message, hint=hint)
        super().__init__(f'[{code.value}] {message}')

    @property
    def code(self) -> ErrorCode:
        """The error code."""
        return self.info.code

    @property
    def hint(self) -> str:
        """Suggestion for addressing this warning, or empty string."""
        return self.info.hint


ERRORS: dict[ErrorCode, ErrorInfo] = {
    E.WORKSPACE_NOT_FOUND: ErrorInfo(
        code=E.WORKSPACE_NOT_FOUND,
        message='The repository root does not exist or is not a directory.',
        hint='Pass --repo-root pointing at the repository checkout.',
    ),
    E.WORKSPACE_DUPLICATE_PACKAGE: ErrorInfo(
        code=E.WORKSPACE_DUPLICATE_PACKAGE,
        message='Two workspaces declare a package with the same name.',
        hint='Rename one of the packages or mark a workspace with a .skip_ci file.',
    ),
    E.GRAPH_CYCLE_DETECTED: ErrorInfo(
        code=E.GRAPH_CYCLE_DETECTED,
        message='Circular dependency detected in the crate graph.',
        hint="Run 'cratekit dependencies' to inspect the edges.",
    ),
    E.VCS_REVISION_NOT_FOUND: ErrorInfo(
        code=E.VCS_REVISION_NOT_FOUND,
        message='A revision used for change detection does not exist.',
        hint='Fetch enough history (git fetch --unshallow) or pass valid --base-rev/--head-rev values.',
    ),
    E.LOCKFILE_DRIFT: ErrorInfo(
        code=E.LOCKFILE_DRIFT,
        message='cargo update modified Cargo.lock in check mode.',
        hint="Run 'cratekit fix-lock-files' and commit the updated Cargo.lock.",
    ),
    E.PATCH_YANKED: ErrorInfo(
        code=E.PATCH_YANKED,
        message='The target registry only has a yanked release of a locked crate.',
        hint='Publish a new release to the target registry or update the lockfile.',
    ),
    E.REGISTRY_AUTH_FAILED: ErrorInfo(
        code=E.REGISTRY_AUTH_FAILED,
        message='The registry rejected the configured credentials.',
        hint='Check ~/.docker/config.json or the explicit registry credentials.',
    ),
}


def explain(code: str) -> str | None:
    """Return a detailed explanation for an error code.

    Args:
        code: The error code string, e.g. ``"CK-LOCKFILE-DRIFT"``.

    Returns:
        A formatted explanation string, or ``None`` if the code is unknown.
    """
    try:
        error_code = ErrorCode(code)
    except ValueError:
        return None

    info = ERRORS.get(error_code)
    if info is None:
        return f'{code}: No detailed explanation available.'

    lines = [f'{code}: {info.message}']
    if info.hint:
        lines.append(f'  Hint: {info.hint}')
    return '\n'.join(lines)


def _render(kind: str, color: str, code: ErrorCode, message: str, hint: str, out: TextIO) -> None:
    if out.isatty():
        console = Console(file=out, highlight=False)
        msg = rich_escape(message)
        console.print(f'[bold {color}]{kind}[/bold {color}][bold {color}]\\[{code.value}][/bold {color}][bold]: {msg}[/bold]')
        if hint:
            console.print('  [dim]|[/dim]')
            console.print(f'  [dim]=[/dim] [cyan]hint[/cyan]: {rich_escape(hint)}')
        console.print()
    else:
        print(f'{kind}[{code.value}]: {message}', file=out)  # noqa: T201 - CLI output
        if hint:
            print('  |', file=out)  # noqa: T201 - CLI output
            print(f'  = hint: {hint}', file=out)  # noqa: T201 - CLI output
        print(file=out)  # noqa: T201 - CLI output


def render_error(exc: CrateKitError, *, file: TextIO | None = None) -> None:
    """Render an error in Rust-compiler style.

    Output format::

        error[CK-LOCKFILE-DRIFT]: cargo update modified Cargo.lock in check mode
          |
          = hint: Run 'cratekit fix-lock-files' and commit the result.

    Args:
        exc: The error to render.
        file: Output stream (defaults to ``sys.stderr``).
    """
    _render('error', 'red', exc.code, exc.info.message, exc.hint, file or sys.stderr)


def render_warning(exc: CrateKitWarning, *, file: TextIO | None = None) -> None:
    """Render a warning in Rust-compiler style.

    Args:
        exc: The warning to render.
        file: Output stream (defaults to ``sys.stderr``).
    """
    _render('warning', 'yellow', exc.code, exc.info.message, exc.hint, file or sys.stderr)


__all__ = [
    'E',
    'ERRORS',
    'CrateKitError',
    'CrateKitWarning',
    'ErrorCode',
    'ErrorInfo',
    'explain',
    'render_error',
    'render_warning',
]
