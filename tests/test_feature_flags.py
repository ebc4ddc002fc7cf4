from __future__ import annotations

import os

from bluffbrain.core import feature_flags


def test_env_and_override_stack() -> None:
    env_var = "BLUFFBRAIN_FEATURES"
    original = os.environ.get(env_var)
    try:
        if env_var in os.environ:
            del os.environ[env_var]

        assert feature_flags.is_enabled(feature_flags.POLICY_GREEDY) is False

        feature_flags.set_env_flags([feature_flags.POLICY_GREEDY])
        assert feature_flags.is_enabled("Policy.Greedy") is True

        with feature_flags.override(disable={feature_flags.POLICY_GREEDY}):
            assert feature_flags.is_enabled(feature_flags.POLICY_GREEDY) is False
            with feature_flags.override(enable={feature_flags.CACHE_BYPASS}):
                assert feature_flags.is_enabled(feature_flags.CACHE_BYPASS) is True
                assert feature_flags.is_enabled(feature_flags.POLICY_GREEDY) is False

        assert feature_flags.is_enabled(feature_flags.POLICY_GREEDY) is True
        assert feature_flags.is_enabled(feature_flags.CACHE_BYPASS) is False

    finally:
        if original is None:
            os.environ.pop(env_var, None)
        else:
            os.environ[env_var] = original
