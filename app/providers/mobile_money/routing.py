# app/providers/mobile_money/routing.py
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from app.payments.errors import AmbiguousRouteError, ProviderFailure
from app.providers.mobile_money.config import normalize_provider

logger = logging.getLogger("mredeo.providers.routing")

_NON_DIGITS = re.compile(r"[^0-9]")


def normalize_msisdn(phone: str, country_code: str) -> str:
    """
    "0754 123 456" / "+255 754 123 456" / "754123456" -> "255754123456"
    """
    cleaned = _NON_DIGITS.sub("", phone or "")
    if not cleaned:
        raise ProviderFailure("Recipient phone number is missing or invalid")

    if cleaned.startswith("0"):
        return country_code + cleaned[1:]
    if not cleaned.startswith(country_code):
        return country_code + cleaned
    return cleaned


def parse_routing_table(raw: str) -> dict[str, tuple[str, ...]]:
    """
    "VODACOM:74,75,76;TIGO:65,67" -> {"VODACOM": ("74", "75", "76"), "TIGO": ("65", "67")}
    """
    table: dict[str, tuple[str, ...]] = {}
    for chunk in (raw or "").split(";"):
        if not chunk.strip():
            continue
        if ":" not in chunk:
            raise ValueError(f"Invalid routing entry {chunk!r}; expected PROVIDER:prefix,prefix")
        name, prefixes = chunk.split(":", 1)
        provider = normalize_provider(name)
        values = tuple(p.strip() for p in prefixes.split(",") if p.strip())
        bad = [p for p in values if not p.isdigit()]
        if bad:
            raise ValueError(f"Invalid routing prefixes for {provider}: {', '.join(bad)}")
        table[provider] = tuple(sorted(set(table.get(provider, ()) + values)))
    return table


def find_overlaps(prefixes: dict[str, tuple[str, ...]]) -> dict[str, set[str]]:
    """
    Prefixes claimed by more than one provider. A prefix overlaps when it
    equals, or is a leading part of, another provider's prefix.
    """
    overlaps: dict[str, set[str]] = {}
    items = [(provider, prefix) for provider, values in prefixes.items() for prefix in values]
    for provider_a, prefix_a in items:
        for provider_b, prefix_b in items:
            if provider_a == provider_b:
                continue
            if prefix_b.startswith(prefix_a):
                overlaps.setdefault(prefix_b, set()).update({provider_a, provider_b})
    return overlaps


@dataclass(frozen=True)
class RoutingTable:
    prefixes: dict[str, tuple[str, ...]]
    default_provider: str
    country_code: str
    overlaps: dict[str, set[str]] = field(default_factory=dict)

    @classmethod
    def from_config(cls, raw: str, *, default_provider: str, country_code: str) -> "RoutingTable":
        prefixes = parse_routing_table(raw)
        overlaps = find_overlaps(prefixes)
        for prefix, providers in sorted(overlaps.items()):
            logger.warning(
                "routing table overlap prefix=%s providers=%s",
                prefix,
                ",".join(sorted(providers)),
            )
        return cls(
            prefixes=prefixes,
            default_provider=normalize_provider(default_provider),
            country_code=country_code,
            overlaps=overlaps,
        )

    def normalize(self, phone: str) -> str:
        return normalize_msisdn(phone, self.country_code)

    def route(self, phone: str) -> str:
        msisdn = self.normalize(phone)
        national = msisdn[len(self.country_code):]

        best_len = 0
        best: set[str] = set()
        for provider, values in self.prefixes.items():
            for prefix in values:
                if not national.startswith(prefix):
                    continue
                if len(prefix) > best_len:
                    best_len = len(prefix)
                    best = {provider}
                elif len(prefix) == best_len:
                    best.add(provider)

        if not best:
            return self.default_provider
        if len(best) > 1:
            raise AmbiguousRouteError(
                f"Phone prefix matches several providers: {', '.join(sorted(best))}",
                providers=sorted(best),
            )
        return next(iter(best))
