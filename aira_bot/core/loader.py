from __future__ import annotations

import importlib
import inspect
import logging
from typing import Iterable, List

from .module import BotModule

logger = logging.getLogger("aira_bot")


def load_module(spec: str) -> BotModule:
    """Resolve ``package.module:attr``. Classes and factories are called, instances used as-is."""
    module_path, sep, attr = spec.strip().partition(":")
    if not sep or not module_path or not attr:
        raise ValueError(f"Module spec must look like 'package.module:attr', got {spec!r}")

    target = getattr(importlib.import_module(module_path), attr)
    if inspect.isclass(target) or (callable(target) and not hasattr(target, "install")):
        target = target()

    for required in ("init", "install"):
        if not callable(getattr(target, required, None)):
            raise TypeError(f"{spec} does not provide {required}()")
    if not getattr(target, "name", None):
        raise TypeError(f"{spec} does not provide a name")
    return target


def load_modules(specs: Iterable[str]) -> List[BotModule]:
    modules: List[BotModule] = []
    for spec in specs:
        module = load_module(spec)
        logger.info("Loaded module %s from %s", module.name, spec)
        modules.append(module)
    return modules
