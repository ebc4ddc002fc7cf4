from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Final

__all__ = ["CHAT_FUSION_MODES", "TIE_BREAKS", "EngineConfig"]

logger = logging.getLogger(__name__)

_PREFIX: Final = "BLUFFBRAIN_"

CHAT_FUSION_MODES: Final = ("scale", "ignore")
TIE_BREAKS: Final = ("lowest", "highest")


@dataclass(frozen=True)
class EngineConfig:
    """Tunables for one decision engine instance."""

    storage_dir: Path = Path("./bluffbrain_state")
    exploration_rate: float = 0.2
    learning_rate: float = 0.1
    discount_factor: float = 0.9
    reward_window: int = 100
    history_limit: int = 20
    decision_history_limit: int = 1000
    cache_ttl: float = 30.0
    cache_size: int = 1024
    lock_ttl: float = 30.0
    signal_timeout: float = 0.5
    retry_attempts: int = 3
    retry_base_delay: float = 0.05
    retry_max_delay: float = 1.0
    personality: str = "balanced"
    base_bluff_likelihood: float = 0.3
    challenge_threshold: float = 0.5
    chat_fusion: str = "scale"
    bluff_tie_break: str = "lowest"
    redis_url: str | None = None
    seed: int | None = None

    def normalised(self) -> EngineConfig:
        """Clamp out-of-range values back into their valid domains."""

        return replace(
            self,
            exploration_rate=_clamp(self.exploration_rate, 0.0, 1.0),
            learning_rate=_clamp(self.learning_rate, 0.0, 1.0),
            discount_factor=_clamp(self.discount_factor, 0.0, 1.0),
            reward_window=max(1, min(100, self.reward_window)),
            history_limit=max(1, min(20, self.history_limit)),
            decision_history_limit=max(1, min(1000, self.decision_history_limit)),
            cache_ttl=max(0.0, self.cache_ttl),
            cache_size=max(1, self.cache_size),
            lock_ttl=max(0.001, self.lock_ttl),
            signal_timeout=max(0.001, self.signal_timeout),
            retry_attempts=max(1, self.retry_attempts),
            base_bluff_likelihood=_clamp(self.base_bluff_likelihood, 0.0, 1.0),
            chat_fusion=self.chat_fusion if self.chat_fusion in CHAT_FUSION_MODES else "scale",
            bluff_tie_break=self.bluff_tie_break if self.bluff_tie_break in TIE_BREAKS else "lowest",
        )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> EngineConfig:
        """Build a config from ``BLUFFBRAIN_*`` variables; bad values keep defaults."""

        env = os.environ if environ is None else environ
        base = cls()
        values: dict[str, object] = {}

        def read(name: str, cast: type) -> None:
            raw = env.get(_PREFIX + name.upper())
            if raw is None or not raw.strip():
                return
            try:
                values[name] = cast(raw.strip())
            except ValueError:
                logger.warning("ignoring invalid config value", extra={"setting": name, "value": raw})

        read("storage_dir", Path)
        read("exploration_rate", float)
        read("learning_rate", float)
        read("discount_factor", float)
        read("reward_window", int)
        read("cache_ttl", float)
        read("lock_ttl", float)
        read("signal_timeout", float)
        read("retry_attempts", int)
        read("personality", str)
        read("base_bluff_likelihood", float)
        read("chat_fusion", str)
        read("bluff_tie_break", str)
        read("redis_url", str)
        read("seed", int)
        # Short aliases documented for operators.
        if "base_bluff_likelihood" not in values and env.get(_PREFIX + "BASE_BLUFF"):
            try:
                values["base_bluff_likelihood"] = float(env[_PREFIX + "BASE_BLUFF"])
            except ValueError:
                logger.warning("ignoring invalid config value", extra={"setting": "base_bluff"})
        if "storage_dir" not in values and env.get(_PREFIX + "STORAGE"):
            values["storage_dir"] = Path(env[_PREFIX + "STORAGE"])
        return replace(base, **values).normalised()


def _clamp(value: float, low: float, high: float) -> float:
    if value != value:  # NaN
        return low
    return max(low, min(high, value))
