# pylint: disable=missing-module-docstring,missing-function-docstring

from audio.profile import LITE, STANDARD, EnvDeviceProfilePolicy, FixedProfilePolicy


def test_forced_profile_wins() -> None:
    policy = EnvDeviceProfilePolicy(environ={"AUDIO_PROFILE": " Lite "}, cpu_count=16)
    assert policy.select() is LITE

    policy = EnvDeviceProfilePolicy(environ={"AUDIO_PROFILE": "standard"}, cpu_count=1)
    assert policy.select() is STANDARD


def test_constrained_host_gets_lite() -> None:
    assert EnvDeviceProfilePolicy(environ={}, cpu_count=2).select() is LITE
    assert EnvDeviceProfilePolicy(environ={}, cpu_count=8).select() is STANDARD


def test_unknown_forced_name_is_ignored() -> None:
    policy = EnvDeviceProfilePolicy(environ={"AUDIO_PROFILE": "turbo"}, cpu_count=8)
    assert policy.select() is STANDARD


def test_lite_uses_larger_blocks() -> None:
    assert LITE.capture_block_size > STANDARD.capture_block_size
    assert FixedProfilePolicy(LITE).select() is LITE
