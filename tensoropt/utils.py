from __future__ import annotations

from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable, Collection

T = TypeVar("T")


def traverse_attrs(  # noqa: C901
    root: object,
    target_type: type[T],
    on_target: Callable[[str, T], T | None],
    *,
    recurse_into: type | tuple[type, ...] = (),
    skip: Collection[str] = (),
) -> None:
    """Recursively traverse all attributes of **root** looking for instances of **target_type**.

    Walks every instance attribute (via `vars(root)`) and descends into
    lists, dicts, and objects whose type is listed in **recurse_into**.
    Paths look like `"layers[0].W"` for lists and nested objects and
    `"param_state{fc.W}{exp_avg}"` for dicts.

    Args:
        root: The object whose attributes to traverse.
        target_type: The type to search for.
        on_target: Callback invoked for every match as `on_target(path, item)`.
            If it returns an instance, the original is replaced in-place.
            If it returns `None`, no replacement occurs.
        recurse_into: Type(s) whose `vars()` should be recursively
            traversed (in addition to the standard containers list and dict).
        skip: Names of top-level attributes of **root** to ignore.

    Raises:
        TypeError: If a target or recurse-into instance is found inside a
            `set` or `tuple`.
    """
    _recurse_into: tuple[type, ...] = (
        (recurse_into,) if isinstance(recurse_into, type) else recurse_into
    )
    _forbidden: tuple[type, ...] = (target_type, *_recurse_into)

    def _replace(parent: Any, key: str | int, result: Any) -> None:
        if isinstance(parent, dict | list):
            parent[key] = result
        elif hasattr(parent, "__dict__") and isinstance(key, str):
            setattr(parent, key, result)
        # tuples are immutable, nothing to replace

    def _handle(parent: Any, key: str | int, item: Any, path: str) -> None:
        if isinstance(item, target_type):
            result = on_target(path, item)
            if result is not None:
                _replace(parent, key, result)
        elif isinstance(item, _recurse_into):
            traverse_attrs(
                item,
                target_type,
                lambda p, t: on_target(f"{path}.{p}", t),
                recurse_into=_recurse_into,
            )
        elif isinstance(item, set | tuple):
            container = type(item).__name__
            for i, elem in enumerate(item):
                if isinstance(elem, _forbidden):
                    raise TypeError(
                        f'Found "{type(elem).__name__}" in property of type "{container}" '
                        f'for path "{path}". Only lists and dicts may store these '
                        f"types (stable ordering, replaceable items)."
                    )
                if isinstance(item, tuple):
                    _handle(item, i, elem, f"{path}[{i}]")
        elif isinstance(item, list):
            for i, elem in enumerate(item):
                _handle(item, i, elem, f"{path}[{i}]")
        elif isinstance(item, dict):
            for k, v in item.items():
                _handle(item, k, v, f"{path}{{{k}}}")

    for attr_name, attr_value in vars(root).items():
        if attr_name in skip:
            continue
        _handle(root, attr_name, attr_value, attr_name)


__all__ = [
    "traverse_attrs",
]
