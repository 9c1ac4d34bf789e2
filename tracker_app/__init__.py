from typing import Any, Iterable, Mapping, Optional

import requests

from connectors import Registry, build_default_registry, set_log_callback

from .config import Settings, load_config
from .log import configure_logging, log


def create_registry(
    settings: Optional[Settings] = None,
    declarative_configs: Iterable[Mapping[str, Any]] = (),
    session: Optional[requests.Session] = None,
) -> Registry:
    """Configure logging, route connector logs through it and build the registry."""
    settings = settings or load_config()
    configure_logging(settings.log_level, settings.log_file)
    set_log_callback(log)

    registry = build_default_registry(
        declarative_configs=declarative_configs,
        session=session,
        settings=settings.client,
    )
    log(f"📚 Connectors ready: {', '.join(item.key for item in registry.list())}")
    return registry


__all__ = ["Settings", "configure_logging", "create_registry", "load_config", "log"]
