from __future__ import annotations

import re

import pandas as pd

from nyc_poll_sites.analysis.config import COLS
from nyc_poll_sites.config import STATE_ABBR
from .keys import normalize_postcode

# A digit run bounded by non-word characters: "144" in "W 144 St", but not "144th" or "9A".
BARE_NUMBER = re.compile(r"\b(\d+)\b")
SUFFIXED_NUMBER = re.compile(r"\b(\d+)((?i:st|nd|rd|th))\b")


def ordinal_suffix(n: int) -> str:
    if 11 <= n % 100 <= 13:
        return "th"
    return {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")


def _ordinalize(match: re.Match) -> str:
    digits = match.group(1)
    return digits + ordinal_suffix(int(digits))


def add_ordinal_suffixes(street_names: pd.Series) -> pd.Series:
    """'144 St' -> '144th St'. Names without a bare number pass through unchanged."""
    return street_names.astype("string").str.replace(BARE_NUMBER, _ordinalize, regex=True)


def _tokens(s: pd.Series, pattern: re.Pattern) -> pd.DataFrame:
    found = s.astype("string").reset_index(drop=True).str.extractall(pattern)
    if found.empty:
        return pd.DataFrame(columns=["row", "number", "suffix"])
    found = found.reset_index()
    found.columns = ["row", "match"] + list(found.columns[2:])
    found = found.rename(columns={0: "number", 1: "suffix"})
    return found


def check_suffix_consistency(before: pd.Series, after: pd.Series) -> pd.DataFrame:
    """
    Count/group check over the rewrite:
      - no bare number survives,
      - suffixed tokens after == suffixed tokens before + bare tokens before,
      - each rewritten number carries exactly one suffix across all rows.
    Returns one row per rewritten number with the corrected form and row count.
    """
    bare_before = _tokens(before, BARE_NUMBER)
    suffixed_before = _tokens(before, SUFFIXED_NUMBER)
    bare_after = _tokens(after, BARE_NUMBER)
    suffixed_after = _tokens(after, SUFFIXED_NUMBER)

    if len(bare_after):
        raise ValueError(f"{len(bare_after)} bare street numbers left after the ordinal rewrite.")
    if len(suffixed_after) != len(suffixed_before) + len(bare_before):
        raise ValueError(
            f"Ordinal rewrite count mismatch: {len(suffixed_before)} suffixed + "
            f"{len(bare_before)} bare before, {len(suffixed_after)} suffixed after."
        )
    if bare_before.empty:
        return pd.DataFrame(columns=["number", "corrected", "rows"])

    rewritten = suffixed_after[suffixed_after["number"].isin(set(bare_before["number"]))]
    rewritten = rewritten.assign(suffix=rewritten["suffix"].str.lower())
    forms = rewritten.groupby("number")["suffix"].nunique()
    if (forms > 1).any():
        raise ValueError(f"Street numbers rewritten inconsistently: {sorted(forms[forms > 1].index)}")

    table = (
        bare_before.groupby("number")["row"].nunique().rename("rows").reset_index()
    )
    table["corrected"] = table["number"].map(lambda d: d + ordinal_suffix(int(d)))
    return table[["number", "corrected", "rows"]]


def build_address(df: pd.DataFrame) -> pd.Series:
    """'<number> <street>, <city>, NY <zip>' from the poll-site columns."""
    number = df[COLS.street_number].astype("string").str.strip()
    street = df[COLS.street_name].astype("string").str.strip().str.replace(r"\s+", " ", regex=True)
    city = df[COLS.city].astype("string").str.strip()
    zip5 = normalize_postcode(df[COLS.postcode])
    return number + " " + street + ", " + city + ", " + STATE_ABBR + " " + zip5


def repair_addresses(df: pd.DataFrame) -> pd.DataFrame:
    out = df.copy()
    fixed = add_ordinal_suffixes(out[COLS.street_name])
    check_suffix_consistency(out[COLS.street_name], fixed)
    out[COLS.street_name] = fixed
    out[COLS.address] = build_address(out)
    return out
