import logging
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pandas as pd

from cmhc.pixels import FLOW_CLASSES
from cmhc.utils import safe_normalized_diff, safe_ratio, to_optional

logger = logging.getLogger(__name__)

FEATURE_COLUMNS = ['date', 'season', 'discharge', 'C', 'W'] + \
    [f'M_{k.lower()}' for k in FLOW_CLASSES] + \
    [f'ratio_C_M_{k.lower()}' for k in FLOW_CLASSES] + \
    [f'MW_{k.lower()}' for k in FLOW_CLASSES]


def masked_mean(arr, mask):
    """Mean of arr over mask, ignoring NaNs; None if nothing is left."""
    v = arr[mask & np.isfinite(arr)]
    if v.size == 0:
        return None
    return float(v.mean())


def pixel_value(arr, selection):
    """Band value at the selected pixel, None without a located selection."""
    if selection is None or selection.row is None or selection.col is None:
        return None
    return to_optional(arr[selection.row, selection.col])


def extract_feature_row(scene, discharge, season, masks, selections, band='B08'):
    """One feature row for a dated scene.

    Parameters
    ----------
    scene : cmhc.imagery.DailyScene
    discharge : float
    season : str
        Season tag written to the row.
    masks : cmhc.masks.CandidateMasks
    selections : dict
        {flow class: PixelSelection or None}

    Returns
    -------
    dict
        Keyed by FEATURE_COLUMNS; undefined values are None.
    """
    arr = scene.band(band)
    c = masked_mean(arr, masks.c & masks.roi)
    w = masked_mean(arr, masks.w & masks.roi)
    row = {'date': scene.date, 'season': season, 'discharge': discharge, 'C': c, 'W': w}
    for k in FLOW_CLASSES:
        m = pixel_value(arr, selections.get(k))
        row[f'M_{k.lower()}'] = m
        row[f'ratio_C_M_{k.lower()}'] = safe_ratio(c, m)
        row[f'MW_{k.lower()}'] = safe_normalized_diff(m, w)
    return row


def extract_features(source, dated_discharge, season, masks, selections, band='B08', n_workers=1):
    """Feature table for a list of (date, discharge) pairs, rows in input order.

    Parameters
    ----------
    source : cmhc.imagery.SceneSource
    dated_discharge : list of (str, float)
    season : str
    masks : cmhc.masks.CandidateMasks
    selections : dict
    n_workers : int
        Threads used to load and reduce scenes.

    Returns
    -------
    pandas.DataFrame
    """
    def extract(pair):
        date, q = pair
        return extract_feature_row(source.get_scene(date), q, season, masks, selections, band)

    if n_workers > 1:
        with ThreadPoolExecutor(max_workers=n_workers) as executor:
            rows = list(executor.map(extract, dated_discharge))
    else:
        rows = [extract(p) for p in dated_discharge]
    logger.info(f'Extracted {len(rows)} feature rows ({season})')
    return pd.DataFrame(rows, columns=FEATURE_COLUMNS)
