from __future__ import annotations

import inspect
import logging
import reprlib
from functools import wraps
from typing import Any, Callable, Iterable, MutableMapping, Optional, Sequence, Set, TypeVar, cast

import numpy as np

F = TypeVar("F", bound=Callable[..., Any])

_repr = reprlib.Repr()
_repr.maxother = 160
_repr.maxdict = 8
_repr.maxlist = 8
_repr.maxtuple = 8
_repr.maxset = 8

_BRACKETS = {tuple: ("(", ")"), list: ("[", "]"), set: ("{", "}"), frozenset: ("frozenset({", "})")}


def _summarize_array(value: np.ndarray, max_items: int) -> str:
    head = f"ndarray(shape={tuple(value.shape)}, dtype={value.dtype})"
    if value.size == 0:
        return head
    if value.size <= max_items:
        return f"{head}, values={_repr.repr(np.round(value, 6).tolist())}"
    return f"{head}, min={float(value.min()):.6g}, max={float(value.max()):.6g}"


def _summarize_graph(value: Any) -> Optional[str]:
    all_nodes = getattr(value, "all_nodes", None)
    all_edges = getattr(value, "all_edges", None)
    if not (callable(all_nodes) and callable(all_edges)):
        return None
    return f"{type(value).__name__}(nodes={len(all_nodes())}, edges={len(all_edges())})"


def safe_repr(value: Any, *, max_items: int = 5, max_length: int = 400) -> str:
    """Short, never-failing representation used in DEBUG logs and trace output."""

    if isinstance(value, np.ndarray):
        return _summarize_array(value, max_items)

    graph_summary = _summarize_graph(value)
    if graph_summary is not None:
        return graph_summary

    if isinstance(value, dict):
        parts = []
        for idx, (key, item) in enumerate(value.items()):
            if idx >= max_items:
                parts.append(f"... (+{len(value) - max_items})")
                break
            parts.append(f"{safe_repr(key)}: {safe_repr(item)}")
        return "{" + ", ".join(parts) + "}"

    brackets = _BRACKETS.get(type(value))
    if brackets is not None:
        parts = []
        for idx, item in enumerate(value):
            if idx >= max_items:
                parts.append(f"... (+{len(value) - max_items})")
                break
            parts.append(safe_repr(item))
        return brackets[0] + ", ".join(parts) + brackets[1]

    if isinstance(value, float):
        return f"{value:.6g}"

    try:
        rendered = _repr.repr(value)
    except Exception as exc:  # pragma: no cover - repr of foreign objects
        rendered = f"<repr-error {exc!r}>"
    if len(rendered) > max_length:
        return rendered[:max_length] + "... (truncated)"
    return rendered


def _describe_call(args: Sequence[Any], kwargs: MutableMapping[str, Any]) -> str:
    rendered = [safe_repr(arg) for arg in args]
    rendered.extend(f"{key}={safe_repr(item)}" for key, item in kwargs.items())
    return ", ".join(rendered) if rendered else "no-args"


def debug_log_call(
    logger: logging.Logger, *, name: Optional[str] = None, log_result: bool = True
) -> Callable[[F], F]:
    """Return a decorator that logs entry, exit and failures of a call at DEBUG."""

    def decorator(func: F) -> F:
        if getattr(func, "_debug_logging_wrapped", False):
            return func

        label = name or getattr(func, "__qualname__", getattr(func, "__name__", "<callable>"))

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any):
            verbose = logger.isEnabledFor(logging.DEBUG)
            if verbose:
                logger.debug("-> %s(%s)", label, _describe_call(args, kwargs))
            try:
                result = func(*args, **kwargs)
            except Exception:
                if verbose:
                    logger.exception("!! %s raised", label)
                raise
            if verbose:
                if log_result:
                    logger.debug("<- %s = %s", label, safe_repr(result))
                else:
                    logger.debug("<- %s", label)
            return result

        setattr(wrapper, "_debug_logging_wrapped", True)
        return cast(F, wrapper)

    return decorator


def _wrap_class(cls: type, logger: logging.Logger, skip: Set[str]) -> None:
    for attr_name, attr_value in list(cls.__dict__.items()):
        if attr_name.startswith("__"):
            continue
        label = f"{cls.__name__}.{attr_name}"
        if attr_name in skip or label in skip:
            continue
        if isinstance(attr_value, (staticmethod, classmethod)):
            func = attr_value.__func__
            if getattr(func, "__module__", None) == cls.__module__:
                setattr(cls, attr_name, type(attr_value)(debug_log_call(logger, name=label)(func)))
        elif inspect.isfunction(attr_value) and attr_value.__module__ == cls.__module__:
            setattr(cls, attr_name, debug_log_call(logger, name=label)(attr_value))


def apply_debug_logging(
    namespace: MutableMapping[str, Any],
    *,
    logger: Optional[logging.Logger] = None,
    skip: Optional[Iterable[str]] = None,
    wrap_methods: bool = True,
) -> None:
    """Wrap the functions (and optionally class methods) defined in a module."""

    module_name = namespace.get("__name__")
    if not isinstance(module_name, str):  # pragma: no cover - only module globals are passed
        module_name = None
    logger = logger or logging.getLogger(module_name or __name__)
    skip_set: Set[str] = set(skip or ())

    for name, value in list(namespace.items()):
        if name in skip_set or getattr(value, "__module__", None) != module_name:
            continue
        if inspect.isfunction(value):
            namespace[name] = debug_log_call(logger, name=name)(value)
        elif wrap_methods and inspect.isclass(value):
            _wrap_class(value, logger, skip_set)

    logger.debug("Call tracing installed for %s", module_name or "<unknown module>")


__all__ = ["apply_debug_logging", "debug_log_call", "safe_repr"]
