"""Services catalog models."""
from collections.abc import Mapping, Sequence
from typing import Any, Optional

from attrs import field, frozen
from cattrs import Converter
from cattrs.gen import make_dict_structure_fn, override


@frozen
class CountryConfig:
    """Payment configuration for one country."""

    method_codes: Sequence[str] = ()
    """The available method codes, in display order."""

    method_configs: Mapping[str, Any] = field(factory=dict)
    """Per-method constraints, keyed by method code."""


@frozen
class ServicesCatalog:
    """The services catalog of a checkout."""

    countries: Sequence[str] = ()
    """The offered countries, in preference order."""

    configs: Mapping[str, CountryConfig] = field(factory=dict)
    """Configuration by country code."""

    def get_country_config(self, country: Optional[str]) -> Optional[CountryConfig]:
        """Get the config for ``country``, if present."""
        if not country:
            return None
        return self.configs.get(country)


@frozen
class PaymentMethodOption:
    """A selectable payment method."""

    code: str
    """The method code sent at submit time."""

    display_name: str
    """The human-readable name."""

    description: str
    """A short description."""


@frozen
class MethodResolution:
    """The result of resolving payment methods for a checkout."""

    country: Optional[str]
    """The country the options were resolved for."""

    options: Sequence[PaymentMethodOption]
    """The options, never empty."""

    fallback: bool = False
    """Whether the default option set was used."""

    @property
    def codes(self) -> tuple[str, ...]:
        """The option codes."""
        return tuple(o.code for o in self.options)

    def get_option(self, code: str) -> Optional[PaymentMethodOption]:
        """Get an option by code."""
        for option in self.options:
            if option.code == code:
                return option
        return None


def configure_services_converter(c: Converter):
    """Register the wire names of the services catalog."""
    c.register_structure_hook(
        CountryConfig,
        make_dict_structure_fn(
            CountryConfig,
            c,
            method_codes=override(rename="trx_methods"),
            method_configs=override(rename="configs"),
        ),
    )


def structure_services_catalog(c: Converter, v: object) -> ServicesCatalog:
    """Structure the ``data`` of a services response.

    Null values are treated as absent.
    """
    if not isinstance(v, Mapping):
        raise TypeError(f"Invalid services catalog: {v!r}")

    raw_configs = v.get("configs") or {}
    if not isinstance(raw_configs, Mapping):
        raise TypeError(f"Invalid services configs: {raw_configs!r}")

    configs = {}
    for country, config in raw_configs.items():
        if not isinstance(config, Mapping):
            continue
        config = {k: val for k, val in config.items() if val is not None}
        configs[country] = c.structure(config, CountryConfig)

    return ServicesCatalog(
        countries=c.structure(v.get("countries") or (), Sequence[str]),
        configs=configs,
    )
