import gapsong


def test_public_api_is_exported() -> None:
    for name in gapsong.__all__:
        assert hasattr(gapsong, name), name
    assert gapsong.__version__ == "0.1.0"
    assert callable(gapsong.render_gap)
    assert issubclass(gapsong.AudioUnavailableError, gapsong.PlaybackError)
