"""
Compile operator-supplied transform expressions into pipeline callables.

An operator transform is a single Python expression that evaluates to a
callable taking one argument, the merged context mapping::

    lambda ctx: {**ctx["item"], "source": "sitemap"}

The result may be ``None`` (drop), one item, or a list of items (fan-out).
Expressions are compiled with RestrictedPython and evaluated against a
namespace that only holds guarded builtins; the callable sees nothing but
the context it is given.
"""
from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from RestrictedPython import (
    compile_restricted_eval,
    limited_builtins,
    safe_builtins,
    utility_builtins,
)
from RestrictedPython.Eval import default_guarded_getitem, default_guarded_getiter
from RestrictedPython.Guards import (
    full_write_guard,
    guarded_iter_unpack_sequence,
    guarded_unpack_sequence,
    safer_getattr,
)

from ..utils import parsing

logger = logging.getLogger(__name__)

IDENTITY_SOURCE = 'lambda ctx: ctx["item"]'

MapFn = Callable[[Any, Dict[str, Any]], Any]
FilterFn = Callable[[Any, Any], Any]
OutputFn = Callable[[Any, Dict[str, Any]], Optional[Awaitable[None]]]


class TransformCompileError(ValueError):
    """Operator transform source is not a valid single-expression callable."""


@dataclass
class TransformStats:
    invocations: int = 0
    filtered: int = 0
    failed: int = 0
    emitted: int = 0


def _apply(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    return func(*args, **kwargs)


def _restricted_globals() -> Dict[str, Any]:
    builtins: Dict[str, Any] = dict(safe_builtins)
    builtins.update(limited_builtins)
    builtins.update(utility_builtins)
    builtins.update(
        dict=dict,
        min=min,
        max=max,
        sum=sum,
        any=any,
        all=all,
        enumerate=enumerate,
        reversed=reversed,
        map=map,
        filter=filter,
    )
    return {
        "__builtins__": builtins,
        "_getattr_": safer_getattr,
        "_getitem_": default_guarded_getitem,
        "_getiter_": default_guarded_getiter,
        "_iter_unpack_sequence_": guarded_iter_unpack_sequence,
        "_unpack_sequence_": guarded_unpack_sequence,
        "_write_": full_write_guard,
        "_apply_": _apply,
    }


def compile_user_function(key: str, source: Optional[str]) -> Callable[[Dict[str, Any]], Any]:
    """
    Compile ``source`` into the sandboxed user callable for ``key``.
    Blank or missing source compiles to the identity on ``ctx["item"]``.
    """
    if not isinstance(source, str) or not source.strip():
        source = IDENTITY_SOURCE

    try:
        result = compile_restricted_eval(source.strip(), filename=f"<{key}>")
    except SyntaxError as exc:
        raise TransformCompileError(f'"{key}" must be a single Python expression: {exc}') from exc
    if result.errors or result.code is None:
        raise TransformCompileError(f'"{key}" must be a single Python expression: ' + "; ".join(result.errors))

    try:
        func = eval(result.code, _restricted_globals())  # noqa: S307 - restricted code object
    except Exception as exc:
        raise TransformCompileError(f'"{key}" failed to evaluate: {exc!r}') from exc
    if not callable(func):
        raise TransformCompileError(f'"{key}" must evaluate to a function, got {type(func).__name__}')
    return func


def default_helpers() -> SimpleNamespace:
    """Helper functions exposed to operator transforms as ``ctx["fns"]``."""
    return SimpleNamespace(
        strip_gid=parsing.strip_gid,
        strip_html=parsing.strip_html,
        strip_url_query=parsing.strip_url_query,
        unique_defined=parsing.unique_defined,
        pick_first_available=parsing.pick_first_available,
        to_snake_case=parsing.to_snake_case,
        parse_iso_date_safe=parsing.parse_iso_date_safe,
        extract_handle=parsing.extract_handle,
    )


def _as_list(value: Any) -> List[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _describe(data: Any) -> str:
    if isinstance(data, dict):
        for key in ("url", "label"):
            if data.get(key):
                return f"{key}={data[key]}"
    return repr(data)[:200]


@dataclass(frozen=True)
class CompiledTransform:
    """
    ``await transform(data, extra_args)`` runs map -> filter -> user -> output
    for every mapped element, in order. Immutable once compiled.
    """

    key: str
    user_fn: Callable[[Dict[str, Any]], Any]
    map_fn: Optional[MapFn] = None
    filter_fn: Optional[FilterFn] = None
    output_fn: Optional[OutputFn] = None
    base_context: Mapping[str, Any] = field(default_factory=dict)
    stats: TransformStats = field(default_factory=TransformStats, compare=False)

    async def __call__(self, data: Any = None, extra_args: Optional[Mapping[str, Any]] = None) -> None:
        self.stats.invocations += 1
        merged: Dict[str, Any] = {**self.base_context, **(extra_args or {})}

        mapped = await _resolve(self.map_fn(data, merged)) if self.map_fn else data
        for item in _as_list(mapped):
            if self.filter_fn is not None and not await _resolve(self.filter_fn(data, item)):
                self.stats.filtered += 1
                continue

            context = {**merged, "data": data, "item": item}
            try:
                result = self.user_fn(context)
            except Exception as exc:
                # One bad item never aborts the batch or the run.
                self.stats.failed += 1
                logger.warning("%s raised for %s: %r", self.key, _describe(data), exc)
                continue

            for output in _as_list(result):
                if output is None or self.output_fn is None:
                    continue
                await _resolve(self.output_fn(output, context))
                self.stats.emitted += 1


def compile_transform(
    key: str,
    source: Optional[str],
    *,
    map_fn: Optional[MapFn] = None,
    filter_fn: Optional[FilterFn] = None,
    output_fn: Optional[OutputFn] = None,
    helpers: Optional[Mapping[str, Any]] = None,
) -> CompiledTransform:
    """
    Compile the transform for ``key`` once. Raises TransformCompileError
    right away for invalid source so a run never starts half-configured.
    """
    user_fn = compile_user_function(key, source)
    logger.debug("Compiled %s (%s)", key, "custom" if source and source.strip() else "identity")
    return CompiledTransform(
        key=key,
        user_fn=user_fn,
        map_fn=map_fn,
        filter_fn=filter_fn,
        output_fn=output_fn,
        base_context=dict(helpers or {}),
    )
