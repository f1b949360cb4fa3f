"""
Provider registry -- availability and model-string resolution.

Model selections travel as a single token ``"provider:modelId"``.  The
registry turns such a token into a concrete ``(provider, model id)`` pair
using the *current* configuration:

* A recognised provider prefix is binding: the provider must be available,
  otherwise :class:`NoProviderConfiguredError` is raised.  An empty model id
  falls back to the provider's configured default model.
* A raw id without a recognised prefix goes to the requested provider (or
  the first entry of ``generation.fallback_order``); if that one is not
  available, exactly one alternate from the same order is tried.  A third
  provider is never considered.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from inkwell.config import (
    PROVIDER_REQUIREMENTS,
    ConfigSource,
    InkwellConfig,
    ProviderConfig,
    ProviderKind,
)
from inkwell.llm.errors import (
    ModelNotFoundError,
    NoModelSelectedError,
    NoProviderConfiguredError,
)
from inkwell.llm.types import ModelReference

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Resolution:
    """The outcome of resolving a model reference."""

    kind: ProviderKind
    model_id: str
    config: ProviderConfig
    fell_back: bool = False

    @property
    def provider(self) -> str:
        return self.kind.value


def parse_model_string(value: str) -> ModelReference:
    """
    Split ``"provider:modelId"``.

    Only a *recognised* provider prefix is split off; anything else
    (``"deepseek/deepseek-r1:reasoning"``) is kept whole as a raw model id.
    """
    value = (value or "").strip()
    prefix, sep, rest = value.partition(":")
    if sep:
        kind = ProviderKind.parse(prefix)
        if kind is not None:
            return ModelReference(provider=kind.value, model_id=rest)
    return ModelReference(provider=None, model_id=value)


def is_provider_available(config: InkwellConfig, kind: ProviderKind) -> bool:
    section = config.provider(kind)
    required = PROVIDER_REQUIREMENTS[kind]
    return bool(section.enabled and getattr(section, required, ""))


class ProviderRegistry:
    """
    Answers availability queries and resolves model references.

    Parameters
    ----------
    config_source:
        Read once per call; the registry holds no configuration of its own.
    """

    def __init__(self, config_source: ConfigSource) -> None:
        self._config_source = config_source

    @property
    def config(self) -> InkwellConfig:
        return self._config_source.current()

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    def is_available(self, provider: ProviderKind | str | None) -> bool:
        kind = provider if isinstance(provider, ProviderKind) else ProviderKind.parse(provider)
        if kind is None:
            return False
        return is_provider_available(self.config, kind)

    def list_available(self) -> list[str]:
        config = self.config
        return [k.value for k in ProviderKind if is_provider_available(config, k)]

    def list_unavailable(self) -> list[str]:
        config = self.config
        return [k.value for k in ProviderKind if not is_provider_available(config, k)]

    def has_any_available(self) -> bool:
        return bool(self.list_available())

    def fallback_candidates(
        self, requested: ProviderKind | str | None = None
    ) -> list[ProviderKind]:
        """
        Ordered providers for a raw model id: the preferred one, then at most
        one alternate.
        """
        order: list[ProviderKind] = []
        for name in self.config.generation.fallback_order:
            kind = ProviderKind.parse(name)
            if kind is None:
                logger.warning("Ignoring unknown provider %r in fallback_order", name)
            elif kind not in order:
                order.append(kind)

        primary = requested if isinstance(requested, ProviderKind) else ProviderKind.parse(requested)
        if primary is None:
            if not order:
                return []
            primary = order[0]

        candidates = [primary]
        for kind in order:
            if kind != primary:
                candidates.append(kind)
                break
        return candidates

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(
        self,
        model: ModelReference | str,
        requested_provider: ProviderKind | str | None = None,
    ) -> Resolution:
        """
        Resolve *model* to a concrete provider and model id.

        Raises
        ------
        NoModelSelectedError
            *model* is empty.
        NoProviderConfiguredError
            No eligible provider is available.
        ModelNotFoundError
            A provider was named but neither the reference nor the provider
            configuration supplies a model id.
        """
        ref = parse_model_string(model) if isinstance(model, str) else model
        config = self.config

        if ref.provider:
            kind = ProviderKind.parse(ref.provider)
            if kind is None or not is_provider_available(config, kind):
                raise NoProviderConfiguredError(ref.provider)
            section = config.provider(kind)
            model_id = ref.model_id or section.model
            if not model_id:
                raise ModelNotFoundError(str(ref))
            return Resolution(kind=kind, model_id=model_id, config=section)

        if not ref.model_id:
            raise NoModelSelectedError()

        candidates = self.fallback_candidates(requested_provider)
        for index, kind in enumerate(candidates):
            if is_provider_available(config, kind):
                if index:
                    logger.info(
                        "Provider %s unavailable, using %s for %s",
                        candidates[0].value, kind.value, ref.model_id,
                    )
                return Resolution(
                    kind=kind,
                    model_id=ref.model_id,
                    config=config.provider(kind),
                    fell_back=index > 0,
                )
        raise NoProviderConfiguredError()
