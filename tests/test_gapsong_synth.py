import math

import numpy as np
import pytest

from gapsong.synth import (
    GAIN_CALIBRATION,
    Automation,
    Convolver,
    Oscillator,
    ResonantLowpass,
    decaying_noise,
    normalize_impulse,
    scale_frequency,
    triangle_wave,
)


def test_scale_frequency_anchors() -> None:
    assert scale_frequency(0) == pytest.approx(220.0)
    assert scale_frequency(7) == pytest.approx(493.88)
    assert scale_frequency(8) == pytest.approx(440.0)
    assert scale_frequency(-1) == pytest.approx(493.88 / 2)
    assert scale_frequency(7.9) == pytest.approx(493.88)


@pytest.mark.parametrize("index", range(-24, 40))
def test_scale_frequency_is_octave_periodic(index: int) -> None:
    assert scale_frequency(index + 8) == pytest.approx(2 * scale_frequency(index))


@pytest.mark.parametrize("index", [math.nan, math.inf, -math.inf, 1e6])
def test_scale_frequency_falls_back_for_unusable_input(index: float) -> None:
    assert scale_frequency(index) == 220.0


def test_automation_linear_ramp() -> None:
    param = Automation(0.0)
    param.set_value(0.0, 0.0)
    param.linear_ramp(1.0, 1.0)
    values = param.render(0.0, 6, 4)
    assert values.tolist() == pytest.approx([0.0, 0.25, 0.5, 0.75, 1.0, 1.0])


def test_automation_exponential_ramp() -> None:
    param = Automation(1.0)
    param.set_value(1.0, 0.0)
    param.exponential_ramp(0.01, 1.0)
    assert param.value_at(0.5) == pytest.approx(0.1)
    assert param.value_at(2.0) == pytest.approx(0.01)


def test_automation_exponential_ramp_from_zero_holds() -> None:
    param = Automation(0.0)
    param.exponential_ramp(0.5, 1.0)
    assert param.value_at(0.5) == 0.0
    assert param.value_at(1.0) == 0.5


def test_automation_set_target_decays() -> None:
    param = Automation(1.0)
    param.set_target(0.0, 0.5, 0.25)
    assert param.value_at(0.25) == pytest.approx(1.0)
    assert param.value_at(0.75) == pytest.approx(math.exp(-1.0))
    assert param.value_at(10.0) == pytest.approx(0.0, abs=1e-9)


def test_automation_cancel_drops_future_events() -> None:
    param = Automation(0.0)
    param.set_value(1.0, 1.0)
    param.set_value(2.0, 2.0)
    param.cancel(1.5)
    assert len(param) == 1
    assert param.value_at(3.0) == 1.0


def test_automation_blocks_match_single_render() -> None:
    param = Automation(0.2)
    param.set_value(0.0, 0.1)
    param.linear_ramp(0.25, 0.105)
    param.exponential_ramp(0.001, 0.3)
    param.set_target(0.0, 0.4, 0.05)
    whole = param.render(0.0, 400, 1000)
    parts = np.concatenate([param.render(0.0, 150, 1000), param.render(0.15, 250, 1000)])
    assert np.allclose(whole, parts)


def test_automation_prune_keeps_later_values() -> None:
    def _schedule(param: Automation) -> None:
        param.set_value(0.0, 0.1)
        param.linear_ramp(0.25, 0.2)
        param.set_target(0.0, 0.3, 0.05)
        param.linear_ramp(0.5, 0.6)

    reference = Automation(1.0)
    _schedule(reference)
    pruned = Automation(1.0)
    _schedule(pruned)

    assert pruned.prune(0.35) == 3
    assert len(pruned) == 1
    assert np.allclose(pruned.render(0.35, 400, 1000), reference.render(0.35, 400, 1000))
    assert pruned.prune(0.35) == 0


def test_oscillator_sine_and_start() -> None:
    osc = Oscillator("sine", 1.0, sample_rate=4)
    assert np.all(osc.render(0.0, 4) == 0.0)
    osc.start(0.0)
    assert osc.render(0.0, 4) == pytest.approx([0.0, 1.0, 0.0, -1.0], abs=1e-12)


def test_oscillator_phase_is_continuous_across_blocks() -> None:
    whole = Oscillator("square", 3.0, sample_rate=128)
    whole.start(0.0)
    split = Oscillator("square", 3.0, sample_rate=128)
    split.start(0.0)
    expected = whole.render(0.0, 128)
    actual = np.concatenate([split.render(0.0, 37), split.render(37 / 128, 91)])
    assert np.array_equal(expected, actual)


def test_oscillator_stop_silences() -> None:
    osc = Oscillator("triangle", 5.0, sample_rate=100)
    osc.start(0.0)
    osc.stop(0.5)
    out = osc.render(0.0, 100)
    assert np.any(out[:50] != 0.0)
    assert np.all(out[50:] == 0.0)
    assert osc.stopped_at == 0.5


def test_triangle_wave_shape() -> None:
    phases = np.array([0.0, 0.25, 0.5, 0.75])
    assert triangle_wave(phases).tolist() == pytest.approx([0.0, 1.0, 0.0, -1.0])


def test_lowpass_passes_dc_and_cuts_highs() -> None:
    sr = 8000
    dc = ResonantLowpass(500.0, 5.0, sample_rate=sr).process(np.ones(4000))
    assert dc[-1] == pytest.approx(1.0, abs=1e-3)

    t = np.arange(4000) / sr
    high = np.sin(2 * np.pi * 3500.0 * t)
    filtered = ResonantLowpass(500.0, 5.0, sample_rate=sr).process(high)
    assert np.max(np.abs(filtered[2000:])) < 0.05


def test_lowpass_state_carries_between_blocks() -> None:
    signal = np.random.default_rng(1).uniform(-1, 1, 1000)
    whole = ResonantLowpass(1200.0, 5.0, sample_rate=8000).process(signal)
    blocks = ResonantLowpass(1200.0, 5.0, sample_rate=8000)
    split = np.concatenate([blocks.process(signal[:333]), blocks.process(signal[333:])])
    assert np.allclose(whole, split)


def test_convolver_overlap_add_matches_full_convolution() -> None:
    rng = np.random.default_rng(7)
    impulse = rng.uniform(-1, 1, size=(2, 50))
    signal = rng.uniform(-1, 1, 120)
    convolver = Convolver(impulse)
    pieces = [convolver.process(signal[i : i + 16]) for i in range(0, 120, 16)]
    out = np.concatenate(pieces, axis=1)
    assert out.shape == (2, 120)
    for channel in range(2):
        assert np.allclose(out[channel], np.convolve(signal, impulse[channel])[:120])
    assert convolver.process(np.zeros(0)).shape == (2, 0)


def test_normalize_impulse_calibration() -> None:
    impulse = np.ones((1, 100))
    assert normalize_impulse(impulse, sample_rate=44_100) == pytest.approx(
        np.full((1, 100), GAIN_CALIBRATION)
    )
    silent = normalize_impulse(np.zeros((2, 10)))
    assert np.all(silent == 0.0)


def test_decaying_noise_shape_and_envelope() -> None:
    noise = decaying_noise(0.5, channels=2, sample_rate=1000, rng=np.random.default_rng(3))
    assert noise.shape == (2, 500)
    assert np.all(np.abs(noise) <= 1.0)
    assert np.max(np.abs(noise[:, -50:])) < 0.001 + 0.1**3
    again = decaying_noise(0.5, channels=2, sample_rate=1000, rng=np.random.default_rng(3))
    assert np.array_equal(noise, again)
