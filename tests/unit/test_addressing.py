import pytest

from x32remote.mixer.addressing import (
    CHANNEL_COUNT,
    channel_id_for,
    channel_label,
    channel_path,
    fader_path,
    group_index,
    is_valid_channel,
    name_path,
    parse_channel,
)


@pytest.mark.parametrize(
    "channel_id, path",
    [
        (0, "/ch/01"),
        (31, "/ch/32"),
        (32, "/auxin/01"),
        (39, "/auxin/08"),
        (40, "/fxrtn/01"),
        (47, "/fxrtn/08"),
        (48, "/bus/01"),
        (63, "/bus/16"),
        (64, "/mtx/01"),
        (69, "/mtx/06"),
        (70, "/main/st"),
        (71, "/main/m"),
        (72, "/dca/1"),
        (79, "/dca/8"),
    ],
)
def test_channel_path_group_boundaries(channel_id: int, path: str) -> None:
    assert channel_path(channel_id) == path


def test_invalid_ids_have_no_path() -> None:
    for channel_id in (-1, 80, 1000, True, "5"):
        assert not is_valid_channel(channel_id)
        assert channel_path(channel_id) == ""
        assert fader_path(channel_id) == ""
        assert name_path(channel_id) == ""


def test_paths_are_distinct() -> None:
    paths = {channel_path(i) for i in range(CHANNEL_COUNT)}

    assert len(paths) == CHANNEL_COUNT


def test_fader_paths() -> None:
    assert fader_path(4) == "/ch/05/mix/fader"
    assert fader_path(70) == "/main/st/mix/fader"
    assert fader_path(74) == "/dca/3/fader"


def test_name_paths() -> None:
    assert name_path(0) == "/ch/01/config/name"
    assert name_path(72) == "/dca/1/config/name"


def test_group_index_and_inverse() -> None:
    for channel_id in range(CHANNEL_COUNT):
        group, index = group_index(channel_id)
        assert channel_id_for(group, index) == channel_id

    assert group_index(0) == ("channel", 1)
    assert group_index(79) == ("dca", 8)

    with pytest.raises(ValueError):
        group_index(80)


def test_channel_labels() -> None:
    assert channel_label(4) == "channel 5"
    assert channel_label(70) == "mains 1"
    assert channel_label(71) == "mono 1"
    assert channel_label(74) == "dca 3"


def test_every_label_parses_back() -> None:
    for channel_id in range(80):
        assert parse_channel(channel_label(channel_id)) == channel_id


@pytest.mark.parametrize(
    "text, channel_id",
    [
        ("42", 42),
        ("ch5", 4),
        ("channel 32", 31),
        ("aux2", 33),
        ("fxrtn 8", 47),
        ("bus-12", 59),
        ("mtx1", 64),
        ("mains", 70),
        ("main", 70),
        ("mono", 71),
        ("DCA 3", 74),
    ],
)
def test_parse_channel(text: str, channel_id: int) -> None:
    assert parse_channel(text) == channel_id


def test_parse_channel_rejects_bad_input() -> None:
    for text in ("80", "ch33", "dca9", "vox", "", "5x"):
        with pytest.raises(ValueError):
            parse_channel(text)
