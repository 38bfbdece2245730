"""Household survey cleaning and derived exposure variables."""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd

from washlab.config import SurveySettings

logger = logging.getLogger(__name__)

NUMERIC_COLS = ("members", "rooms", "wealth_index")


def to_boolean(values: pd.Series, settings: SurveySettings) -> pd.Series:
    """Map yes/no style answers to a nullable boolean (unknown -> <NA>)."""
    text = values.astype(str).str.strip().str.lower()
    out = pd.Series(pd.NA, index=values.index, dtype="boolean")
    out[text.isin(settings.yes_values)] = True
    out[text.isin(settings.no_values)] = False
    return out


def clean_survey(raw: pd.DataFrame, settings: SurveySettings) -> pd.DataFrame:
    """Clean the raw survey and add derived exposures.

    Derived columns:
      crowding            members / rooms (NaN where rooms <= 0)
      owns_animals        any configured animal column is yes
      improved_water      water_source in the improved set
      improved_sanitation sanitation in the improved set

    Duplicate household IDs keep the first record.
    """
    df = raw.copy()

    dupes = df["household_id"].duplicated(keep="first")
    if dupes.any():
        logger.warning(
            "Dropping %d duplicate survey records: %s",
            int(dupes.sum()), sorted(df.loc[dupes, "household_id"].unique())[:10],
        )
        df = df[~dupes].copy()

    missing_id = df["household_id"].isna()
    if missing_id.any():
        logger.warning("Dropping %d survey records without household_id", int(missing_id.sum()))
        df = df[~missing_id].copy()

    for col in NUMERIC_COLS:
        if col in df.columns:
            df[col] = pd.to_numeric(df[col], errors="coerce")

    for col in [*settings.boolean_columns, *settings.animal_columns]:
        if col in df.columns:
            df[col] = to_boolean(df[col], settings)

    if {"members", "rooms"} <= set(df.columns):
        rooms = df["rooms"].where(df["rooms"] > 0)
        df["crowding"] = df["members"] / rooms

    animals = [c for c in settings.animal_columns if c in df.columns]
    if animals:
        # True if any animal is owned; False only if all answers are known "no".
        frame = df[animals]
        any_yes = frame.fillna(False).astype(bool).any(axis=1)
        all_known = frame.notna().all(axis=1)
        owns = pd.Series(pd.NA, index=df.index, dtype="boolean")
        owns[any_yes] = True
        owns[~any_yes & all_known] = False
        df["owns_animals"] = owns

    for col, source, improved in (
        ("improved_water", "water_source", settings.improved_water),
        ("improved_sanitation", "sanitation", settings.improved_sanitation),
    ):
        if source in df.columns:
            text = df[source].astype(str).str.strip().str.lower()
            df[source] = text.where(df[source].notna(), np.nan)
            flag = pd.Series(pd.NA, index=df.index, dtype="boolean")
            known = df[source].notna()
            flag[known] = text[known].isin(improved)
            df[col] = flag

    df = df.sort_values("household_id").reset_index(drop=True)
    logger.info("Cleaned survey: %d households, %d columns", len(df), len(df.columns))
    return df
