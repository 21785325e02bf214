"""Eligibility resolution: which handlers may run a request, and in what order."""

from collections.abc import Iterable

from ifrit.capabilities.base import CapabilityError, CapabilityHandler, ExecuteRequest
from ifrit.capabilities.settings import CapabilitiesConfig


def resolve_handlers(
    request: ExecuteRequest,
    handlers: Iterable[CapabilityHandler],
    config: CapabilitiesConfig,
    *,
    use_fallback: bool = True,
) -> list[CapabilityHandler]:
    """Build the ordered candidate list for *request*.

    Order: the request's preferred handler (or the setting's default), then the
    setting's fallback ids in their given order, then every other eligible
    handler by descending priority. Ties keep the input order.

    Raises:
        CapabilityError: ``capability_disabled`` when the capability is switched
            off, ``no_handlers`` when nothing available declares it.
    """
    capability = request.capability
    setting = config.setting_for(capability)
    if setting is not None and not setting.enabled:
        raise CapabilityError(
            "capability_disabled",
            f"Capability disabled: {capability}",
            details={"capability": capability},
        )

    eligible = [h for h in handlers if h.supports(capability) and h.is_available]
    if not eligible:
        raise CapabilityError(
            "no_handlers",
            f"No handlers available for capability: {capability}",
            details={"capability": capability},
        )

    by_id: dict[str, CapabilityHandler] = {}
    for handler in eligible:
        by_id.setdefault(handler.id, handler)
    # sorted() is stable, so equal priorities keep registration order
    by_priority = sorted(by_id.values(), key=lambda h: -h.priority)

    primary_id = None
    if request.preferred_handler and request.preferred_handler in by_id:
        primary_id = request.preferred_handler
    elif setting is not None and setting.default_handler_id in by_id:
        primary_id = setting.default_handler_id

    ordered: list[CapabilityHandler] = []
    seen: set[str] = set()

    def place(handler: CapabilityHandler) -> None:
        if handler.id not in seen:
            seen.add(handler.id)
            ordered.append(handler)

    place(by_id[primary_id] if primary_id else by_priority[0])
    if use_fallback and setting is not None:
        for fallback_id in setting.fallback_handler_ids:
            if fallback_id in by_id:
                place(by_id[fallback_id])
    for handler in by_priority:
        place(handler)
    return ordered
