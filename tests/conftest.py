import numpy as np
import pandas as pd
import pytest

URL_HEADER = "URL (SEE https://www.redfin.com/buy-a-home/comparative-market-analysis FOR INFO ON PRICING)"


def make_listing(**overrides) -> dict:
    """One raw gis-csv row with Redfin's column headers."""
    row = {
        "SALE TYPE": "PAST SALE",
        "SOLD DATE": "March-11-2020",
        "PROPERTY TYPE": "Single Family Residential",
        "ADDRESS": "12 Oak Ln",
        "CITY": "Jenkintown",
        "STATE OR PROVINCE": "PA",
        "ZIP OR POSTAL CODE": 19046,
        "PRICE": 300000,
        "BEDS": 3,
        "BATHS": 2.0,
        "LOCATION": "Jenkintown",
        "SQUARE FEET": 1500,
        "LOT SIZE": 5000.0,
        "YEAR BUILT": 1950,
        "DAYS ON MARKET": np.nan,
        "$/SQUARE FEET": 200.0,
        "HOA/MONTH": np.nan,
        "STATUS": "Sold",
        "NEXT OPEN HOUSE START TIME": np.nan,
        "NEXT OPEN HOUSE END TIME": np.nan,
        URL_HEADER: "https://www.redfin.com/PA/Jenkintown/12-Oak-Ln-19046/home/1001",
        "SOURCE": "Bright MLS",
        "MLS#": "MDFR1001",
        "FAVORITE": "N",
        "INTERESTED": "Y",
        "LATITUDE": 40.10,
        "LONGITUDE": -75.20,
    }
    row.update(overrides)
    return row


@pytest.fixture
def raw_listings() -> pd.DataFrame:
    """
    Seven raw rows: three valid sales, one exact duplicate, one active
    listing, one condo and one zero square footage sale.
    """
    first = make_listing()
    rows = [
        first,
        make_listing(
            **{
                "SOLD DATE": "June-02-2020", "PRICE": 330000, "BATHS": 2.5,
                "SQUARE FEET": 1100, "HOA/MONTH": 150.0, "ADDRESS": "14 Oak Ln",
                URL_HEADER: "https://www.redfin.com/PA/Jenkintown/14-Oak-Ln-19046/home/1002",
                "MLS#": "MDFR1002", "LATITUDE": 40.20, "LONGITUDE": -75.10,
            }
        ),
        make_listing(
            **{
                "SOLD DATE": "January-15-2021", "PROPERTY TYPE": "Townhouse", "PRICE": 400000,
                "SQUARE FEET": 2000, "LOCATION": np.nan, "ADDRESS": "16 Oak Ln",
                URL_HEADER: "https://www.redfin.com/PA/Jenkintown/16-Oak-Ln-19046/home/1003",
                "MLS#": "MDFR1003", "LATITUDE": 40.15, "LONGITUDE": -75.00,
            }
        ),
        dict(first),
        make_listing(
            **{
                "SOLD DATE": np.nan, "SALE TYPE": "MLS Listing", "STATUS": "Active",
                "ADDRESS": "18 Oak Ln", "MLS#": "MDFR1004",
            }
        ),
        make_listing(
            **{
                "SOLD DATE": "May-05-2021", "PROPERTY TYPE": "Condo/Co-op", "ADDRESS": "20 Oak Ln",
                "MLS#": "MDFR1005",
            }
        ),
        make_listing(
            **{
                "SOLD DATE": "July-20-2021", "BEDS": 4, "SQUARE FEET": 0, "ADDRESS": "22 Oak Ln",
                "MLS#": "MDFR1006",
            }
        ),
    ]
    return pd.DataFrame(rows)


def make_derived(rows) -> pd.DataFrame:
    """Minimal derived table from (sold_year, beds, baths, price, square_feet) tuples."""
    from transform import as_category

    df = pd.DataFrame(rows, columns=["sold_year", "beds", "baths", "price", "square_feet"])
    df["ppsf"] = df["price"] / df["square_feet"]
    df["beds"] = as_category(df["beds"])
    df["baths"] = as_category(df["baths"])
    return df
