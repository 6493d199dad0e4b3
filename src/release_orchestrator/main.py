"""Executable CLI entrypoint for ``release_orchestrator``.

Exit codes: 0 every non-skipped stage passed, 1 the run failed (or was
interrupted), 2 configuration or run-parameter error, 3 internal error.
"""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    """Deterministic process exit-code contract."""

    SUCCESS = 0
    RUN_FAILED = 1
    CONFIG_ERROR = 2
    INTERNAL_ERROR = 3


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Entrypoint used by ``python -m release_orchestrator`` and script shims."""

    try:
        from release_orchestrator.ui.cli import run_cli

        return _normalize_exit_code(run_cli(argv))
    except SystemExit as exc:
        return _normalize_exit_code(exc.code)
    except BaseException as exc:  # noqa: BLE001
        code = _route_exception(exc)
        if code is ExitCode.INTERNAL_ERROR:
            traceback.print_exception(exc, file=sys.stderr)
        else:
            _write_stderr(str(exc).strip() or type(exc).__name__)
        return int(code)


def _normalize_exit_code(raw_code: object) -> int:
    if raw_code is None:
        return ExitCode.SUCCESS
    if isinstance(raw_code, int) and raw_code in {code.value for code in ExitCode}:
        return int(raw_code)
    if isinstance(raw_code, str) and raw_code.strip():
        # argparse and ``sys.exit("...")`` carry the message in the code.
        _write_stderr(raw_code.strip())
    return ExitCode.INTERNAL_ERROR


def _route_exception(exc: BaseException) -> ExitCode:
    routes = _exit_code_routes()
    for link in _causes(exc):
        for error_types, code in routes:
            if isinstance(link, error_types):
                return code
    return ExitCode.INTERNAL_ERROR


def _exit_code_routes() -> tuple[tuple[tuple[type[BaseException], ...], ExitCode], ...]:
    from release_orchestrator.config.loader import ConfigLoadError
    from release_orchestrator.config.schema import ConfigValidationError
    from release_orchestrator.pipeline.metadata import ParameterError

    return (
        ((ConfigLoadError, ConfigValidationError, ParameterError), ExitCode.CONFIG_ERROR),
        ((KeyboardInterrupt,), ExitCode.RUN_FAILED),
    )


def _causes(exc: BaseException) -> Iterator[BaseException]:
    """Yield ``exc`` and then each explicit cause or unsuppressed context, once."""

    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        if current.__cause__ is not None:
            current = current.__cause__
        elif not current.__suppress_context__:
            current = current.__context__
        else:
            current = None


def _write_stderr(message: str) -> None:
    sys.stderr.write(message.rstrip("\n") + "\n")


def console_main() -> None:
    """Console-script shim."""

    raise SystemExit(cli_entrypoint())


__all__ = ["ExitCode", "cli_entrypoint", "console_main"]
