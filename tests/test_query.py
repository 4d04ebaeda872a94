import pytest

from query import QueryConfig


def test_default_price_bins():
    bins = QueryConfig().price_bins()

    assert len(bins) == 7
    assert bins[0] == (400000, 419999)
    assert bins[1] == (420000, 439999)
    assert bins[-1] == (520000, 539999)


def test_request_params_uses_bed_bounds_for_beds():
    config = QueryConfig(num_beds=4, max_num_beds=5, num_baths=2, max_num_baths=3)
    params = config.request_params("9641", 400000, 419999)

    assert params["region_id"] == "9641"
    assert params["min_price"] == "400000"
    assert params["max_price"] == "419999"
    assert (params["num_beds"], params["max_num_beds"]) == ("4", "5")
    assert (params["num_baths"], params["max_num_baths"]) == ("2", "3")
    assert params["status"] == "9"
    assert params["sold_within_days"] == "1825"
    assert params["uipt"] == "1,2,3"


def test_from_env(monkeypatch):
    monkeypatch.setenv("REDFIN_REGION_IDS", "26781, 9641")
    monkeypatch.setenv("REDFIN_PRICE_BIN_COUNT", "3")
    monkeypatch.setenv("REDFIN_REQUEST_PAUSE", "0")

    config = QueryConfig.from_env()

    assert config.region_ids == ("26781", "9641")
    assert config.price_bin_count == 3
    assert config.pause == 0.0


def test_overrides_win_over_env(monkeypatch):
    monkeypatch.setenv("REDFIN_REGION_IDS", "26781")

    config = QueryConfig.from_env(region_ids=["7735"], price_base=None)

    assert config.region_ids == ("7735",)
    assert config.price_base == 400000


@pytest.mark.parametrize(
    "kwargs",
    [
        {"region_ids": ()},
        {"price_bin_count": 0},
        {"price_bin_width": 0},
        {"sold_within_days": 0},
        {"num_beds": 5, "max_num_beds": 3},
        {"num_baths": 4, "max_num_baths": 2},
    ],
)
def test_invalid_config(kwargs):
    with pytest.raises(ValueError):
        QueryConfig(**kwargs)


def test_describe():
    summary = QueryConfig().describe()

    assert summary["Price band"] == "$400,000 - $539,999 (7 bins)"
    assert summary["Regions"] == "7735"
