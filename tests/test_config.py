import pytest
from pydantic import ValidationError

from nyc_taxi_ingest.config import ParserConfig


def test_defaults():
    config = ParserConfig()

    assert (config.delimiter, config.quote, config.escape) == (",", '"', '"')
    assert config.chunk_size == 64 * 1024
    assert config.max_field_size == 128 * 1024
    assert config.error_tolerance == 0.01
    assert config.batch_size == 1000
    assert config.skip_empty_lines and not config.skip_header


def test_camel_case_option_names():
    config = ParserConfig(**{"chunkSize": 8192, "errorTolerance": 0.05, "skipHeader": True})

    assert config.chunk_size == 8192
    assert config.error_tolerance == 0.05
    assert config.skip_header


@pytest.mark.parametrize(
    "options",
    [
        {"delimiter": ";;"},
        {"delimiter": ""},
        {"quote": "\n"},
        {"delimiter": '"'},
        {"escape": ","},
        {"encoding": "no-such-codec"},
        {"error_tolerance": 1.5},
        {"chunk_size": 0},
        {"batch_size": -1},
        {"unknown_option": True},
    ],
)
def test_invalid_options(options):
    with pytest.raises(ValidationError):
        ParserConfig(**options)


def test_config_is_frozen():
    config = ParserConfig()

    with pytest.raises(ValidationError):
        config.batch_size = 10
